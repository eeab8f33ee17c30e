from fractions import Fraction

from studywhiz.api.grading_policy import (
    answers_equivalent,
    parse_numeric_answer,
    render_examples,
    verdict,
)


def test_parse_numeric_answer_forms() -> None:
    assert parse_numeric_answer("1/2") == Fraction(1, 2)
    assert parse_numeric_answer("0,75") == Fraction(3, 4)
    assert parse_numeric_answer("50%") == Fraction(1, 2)
    assert parse_numeric_answer(" 12 ") == Fraction(12)
    assert parse_numeric_answer("1/0") is None
    assert parse_numeric_answer("seven") is None
    assert parse_numeric_answer("") is None


def test_equivalent_pairs_are_correct() -> None:
    assert verdict("1/2", "0.5") == "CORRECT"
    assert verdict("2/3", "0.6667") == "CORRECT"
    assert verdict("2/3", "0.67") == "CORRECT"
    assert verdict("1/3", "0.33") == "CORRECT"
    assert verdict("3/4", "75%") == "CORRECT"


def test_out_of_tolerance_pairs_are_incorrect() -> None:
    assert verdict("1/2", "0.4") == "INCORRECT"
    assert verdict("2/3", "0.6") == "INCORRECT"


def test_text_answers_compare_case_insensitively() -> None:
    assert answers_equivalent("Paris", "  paris ")
    assert not answers_equivalent("Paris", "Lyon")


def test_render_examples_match_policy() -> None:
    english = render_examples("en")
    assert "- expected 1/2, student wrote 0.5 -> CORRECT" in english
    assert "- expected 1/2, student wrote 0.4 -> INCORRECT" in english
    french = render_examples("fr")
    assert "- attendu 1/3, l'élève a écrit 0.33 -> CORRECT" in french
