"""``{{name}}`` placeholder substitution for prompt templates.

Substitution is a single left-to-right scan: a value that itself contains
``{{...}}`` is never expanded with supplied variables. A final cleanup scan
replaces anything still shaped like a placeholder with a typed default, so
no ``{{...}}`` token ever reaches a provider.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

FALLBACK_VALUE = "student"

PLACEHOLDER_DEFAULTS: Dict[str, str] = {
    "student_level": "student",
    "grade_level": "student",
    "first_name": "student",
    "country": "your country",
    "learning_style": "a balanced",
    "subject": "this subject",
    "exercise_content": "the exercise",
    "student_answer": "your answer",
    "correct_answer": "the correct answer",
    "response_language": "English",
}

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "fr": "French",
}

# camelCase keys sent by the web client.
_CONTEXT_KEY_ALIASES: Dict[str, str] = {
    "gradeLevel": "grade_level",
    "studentLevel": "student_level",
    "firstName": "first_name",
    "learningStyle": "learning_style",
    "userType": "user_type",
    "responseLanguage": "response_language",
    "exerciseContent": "exercise_content",
    "studentAnswer": "student_answer",
    "correctAnswer": "correct_answer",
}

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
_LEFTOVER_RE = re.compile(r"\{\{([^}]+)\}\}")
_TRAILING_ANSWER_RE = re.compile(r"=\s*([^=]+)$")


def render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def default_for(name: str) -> str:
    return PLACEHOLDER_DEFAULTS.get(name.strip(), FALLBACK_VALUE)


def substitute(template: str, variables: Optional[Mapping[str, Any]] = None) -> str:
    values = variables or {}

    def _fill(match: "re.Match[str]") -> str:
        name = match.group(1)
        value = values.get(name)
        if value is None:
            return default_for(name)
        return render_value(value)

    filled = _PLACEHOLDER_RE.sub(_fill, template or "")
    return _LEFTOVER_RE.sub(lambda m: default_for(m.group(1)), filled)


def language_code(language: Optional[str], default: str = "en") -> str:
    text = str(language or "").strip().lower()
    if not text:
        return default
    if text in {"french", "français", "francais"}:
        return "fr"
    if text in {"english", "anglais"}:
        return "en"
    return re.split(r"[-_]", text, maxsplit=1)[0] or default


def extract_proposed_answer(message: str) -> Optional[str]:
    match = _TRAILING_ANSWER_RE.search(message or "")
    if not match:
        return None
    answer = match.group(1).strip()
    return answer or None


def normalize_user_context(user_context: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for key, value in (user_context or {}).items():
        if value is None or isinstance(value, (dict, list)):
            continue
        normalized[_CONTEXT_KEY_ALIASES.get(str(key), str(key))] = value
    return normalized


def build_prompt_variables(
    *,
    message: str,
    language: str,
    user_context: Optional[Mapping[str, Any]] = None,
    subject: Optional[str] = None,
    extras: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Assemble the per-request variable set; never persisted."""
    variables = normalize_user_context(user_context)
    for key, value in (extras or {}).items():
        if value is not None:
            variables[key] = value

    if variables.get("grade_level") is None and variables.get("student_level") is not None:
        variables["grade_level"] = variables["student_level"]
    if variables.get("student_level") is None and variables.get("grade_level") is not None:
        variables["student_level"] = variables["grade_level"]

    if subject:
        variables["subject"] = subject
    if variables.get("response_language") is None:
        name = LANGUAGE_NAMES.get(language_code(language))
        if name:
            variables["response_language"] = name

    variables["problem"] = message
    variables["user_message"] = message
    proposed = extract_proposed_answer(message)
    if proposed is not None:
        variables["proposed_answer"] = proposed
    return variables
