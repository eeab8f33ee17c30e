"""Mathematical-equivalence policy used by the built-in grading prompt.

The model does the grading; this module states the policy in executable form
so the worked examples embedded in the prompt are always consistent with it.
"""
from __future__ import annotations

import re
from fractions import Fraction
from typing import Optional, Tuple

# Two-decimal rounding tolerance: 2/3 accepts 0.67, 0.667 and 0.6667.
TOLERANCE = Fraction(1, 200)

_FRACTION_RE = re.compile(r"^([+-]?\d+)\s*/\s*([+-]?\d+)$")
_DECIMAL_RE = re.compile(r"^[+-]?(\d+([.,]\d*)?|[.,]\d+)$")
_PERCENT_RE = re.compile(r"^(.+?)\s*%$")

EQUIVALENCE_EXAMPLES: Tuple[Tuple[str, str], ...] = (
    ("1/2", "0.5"),
    ("1/2", "50%"),
    ("3/4", "0,75"),
    ("2/3", "0.67"),
    ("2/3", "0.667"),
    ("2/3", "0.6667"),
    ("1/3", "0.33"),
    ("1/2", "0.4"),
    ("2/3", "0.6"),
)


def parse_numeric_answer(text: str) -> Optional[Fraction]:
    value = str(text or "").strip().replace(" ", "")
    if not value:
        return None
    percent = _PERCENT_RE.match(value)
    if percent:
        inner = parse_numeric_answer(percent.group(1))
        return None if inner is None else inner / 100
    fraction = _FRACTION_RE.match(value)
    if fraction:
        denominator = int(fraction.group(2))
        if denominator == 0:
            return None
        return Fraction(int(fraction.group(1)), denominator)
    if _DECIMAL_RE.match(value):
        return Fraction(value.replace(",", "."))
    return None


def _normalize_text(text: str) -> str:
    return " ".join(str(text or "").split()).casefold()


def answers_equivalent(correct_answer: str, student_answer: str) -> bool:
    correct = parse_numeric_answer(correct_answer)
    student = parse_numeric_answer(student_answer)
    if correct is not None and student is not None:
        return abs(correct - student) <= TOLERANCE
    return _normalize_text(correct_answer) == _normalize_text(student_answer)


def verdict(correct_answer: str, student_answer: str) -> str:
    return "CORRECT" if answers_equivalent(correct_answer, student_answer) else "INCORRECT"


def render_examples(language: str = "en") -> str:
    template = "- attendu {correct}, l'élève a écrit {student} -> {verdict}"
    if language != "fr":
        template = "- expected {correct}, student wrote {student} -> {verdict}"
    return "\n".join(
        template.format(correct=correct, student=student, verdict=verdict(correct, student))
        for correct, student in EQUIVALENCE_EXAMPLES
    )
