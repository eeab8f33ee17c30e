"""Keyword and regex heuristics over the raw message.

These only toggle formatting hints and the math enhancement; they are not grading logic.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

EXERCISE_KEYWORDS = ("solve", "calculate", "find", "homework", "exercise", "problem", "question", "assignment")

GRADING_PHRASE = "I need you to grade this"
GRADING_PREFIX = "Grade this answer"

_EQUATION_RE = re.compile(r"\d+\s*[\+\-\*/]\s*\d+\s*=")

_MATH_PATTERNS = (
    re.compile(r"\d+\s*[\+\-\*/]\s*\d+"),
    re.compile(r"[0-9x]+\s*[\+\-\*/]\s*[0-9x]+\s*="),
    re.compile(r"\d+/\d+"),
    re.compile(r"\d+\s*%"),
    re.compile(r"sqrt|cos|sin|tan|log|exp"),
    re.compile(r"\([0-9x\+\-\*/]+\)"),
    re.compile(r"\b(solve|calculate|compute|evaluate|simplify|find)\b.*\d", re.IGNORECASE),
)


@dataclass(frozen=True)
class Classification:
    is_exercise: bool
    is_grading_request: bool


def detect_grading_request(message: str, flag: bool = False) -> bool:
    text = message or ""
    return bool(flag) or GRADING_PHRASE in text or text.lstrip().startswith(GRADING_PREFIX)


def is_exercise(message: str, is_grading_request: bool = False) -> bool:
    if is_grading_request:
        return False
    text = message or ""
    lowered = text.lower()
    if any(keyword in lowered for keyword in EXERCISE_KEYWORDS):
        return True
    return bool(_EQUATION_RE.search(text))


def classify(message: str, is_grading_request_flag: bool = False) -> Classification:
    grading = detect_grading_request(message, is_grading_request_flag)
    return Classification(is_exercise=is_exercise(message, grading), is_grading_request=grading)


def is_math_problem(message: str) -> bool:
    text = message or ""
    return any(pattern.search(text) for pattern in _MATH_PATTERNS)
