"""
Quiz rules shared by the server and the client library.

Everything here is pure: it works on the pydantic schemas (or ORM rows with
the same attribute names) and raises `shared.errors.ValidationError` with the
offending field, so a form can highlight it and the API can report it.
"""
from enum import Enum
from typing import Iterable, Optional

from shared.errors import ValidationError


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"

    @property
    def is_objective(self) -> bool:
        if self is QuestionType.MULTIPLE_CHOICE or self is QuestionType.TRUE_FALSE:
            return True
        if self is QuestionType.SHORT_ANSWER:
            return False
        raise AssertionError(f"unhandled question type {self!r}")

    @property
    def auto_advances(self) -> bool:
        # single-answer pick moves the wizard on; true/false and text entry do not
        return self is QuestionType.MULTIPLE_CHOICE


def _type_of(question) -> QuestionType:
    return QuestionType(question.question_type)


# -------------------------
# Authoring
# -------------------------

def validate_quiz_draft(quiz) -> None:
    """
    Reject a quiz draft before anything is persisted.

    Checks run in form order, so the first problem a teacher would see on the
    page is the one reported.
    """
    if not (quiz.title or "").strip():
        raise ValidationError("Quiz title is required", field="title")

    if not quiz.questions:
        raise ValidationError("Quiz must have at least one question", field="questions")

    for i, q in enumerate(quiz.questions):
        n = i + 1
        if not (q.text or "").strip():
            raise ValidationError(f"Question {n} text is required", field=f"questions[{i}].text")

        if q.points is None or q.points < 1:
            raise ValidationError(
                f"Question {n} points must be a positive whole number", field=f"questions[{i}].points"
            )

        qtype = _type_of(q)
        if not qtype.is_objective:
            continue

        if len(q.options) < 2:
            raise ValidationError("Questions must have at least two options", field=f"questions[{i}].options")

        for j, opt in enumerate(q.options):
            if not (opt.text or "").strip():
                raise ValidationError(
                    f"Option {j + 1} for Question {n} text is required",
                    field=f"questions[{i}].options[{j}].text",
                )

        correct = sum(1 for opt in q.options if opt.is_correct)
        if correct == 0:
            raise ValidationError(
                f"Question {n} must have at least one correct answer", field=f"questions[{i}].options"
            )

        if qtype is QuestionType.TRUE_FALSE:
            if len(q.options) != 2:
                raise ValidationError(
                    f"Question {n} must have exactly two options (True and False)",
                    field=f"questions[{i}].options",
                )
            if correct != 1:
                raise ValidationError(
                    f"Question {n} must have exactly one correct answer", field=f"questions[{i}].options"
                )
        elif qtype is QuestionType.MULTIPLE_CHOICE and correct > 1:
            raise ValidationError(
                f"Question {n} can only have one correct answer", field=f"questions[{i}].options"
            )


def max_score(questions: Iterable) -> int:
    return sum(int(q.points or 0) for q in questions)


# -------------------------
# Answers
# -------------------------

def answer_is_complete(question_type, selected_options: Optional[Iterable[int]], text_answer: Optional[str]) -> bool:
    qtype = QuestionType(question_type)
    if qtype.is_objective:
        return bool(list(selected_options or []))
    return bool((text_answer or "").strip())


def correct_option_ids(question) -> set[int]:
    return {opt.id for opt in question.options if opt.is_correct}


def is_answer_correct(question, selected_options: Iterable[int]) -> bool:
    """Exact set equality with the correct options; short answers are never auto-marked."""
    if not _type_of(question).is_objective:
        return False
    selected = set(selected_options or [])
    return bool(selected) and selected == correct_option_ids(question)


def first_unanswered(questions: list, answers: dict) -> Optional[int]:
    """Index of the first question without a complete answer, or None when all are answered.

    `answers` maps question id to an object with `selected_options` and `text_answer`.
    """
    for i, q in enumerate(questions):
        a = answers.get(q.id)
        if a is None or not answer_is_complete(q.question_type, a.selected_options, a.text_answer):
            return i
    return None


def normalize_answer_set(questions: list, answers: list) -> list:
    """
    Check a submitted answer set against the quiz and return it in question order.

    Answers for unknown questions, options that do not belong to their question,
    duplicates and missing answers are all rejected. Short-answer option picks and
    objective free text are dropped.
    """
    by_question = {}
    known = {q.id: q for q in questions}
    for k, a in enumerate(answers):
        q = known.get(a.question_id)
        if q is None:
            raise ValidationError(
                f"Answer {k + 1} refers to a question that is not part of this quiz",
                field=f"answers[{k}].question_id",
            )
        if a.question_id in by_question:
            raise ValidationError(
                f"Question {a.question_id} was answered more than once", field=f"answers[{k}].question_id"
            )

        if _type_of(q).is_objective:
            option_ids = {opt.id for opt in q.options}
            selected = []
            for opt_id in a.selected_options or []:
                if opt_id not in option_ids:
                    raise ValidationError(
                        f"Option {opt_id} does not belong to question {q.id}",
                        field=f"answers[{k}].selected_options",
                    )
                if opt_id not in selected:
                    selected.append(opt_id)
            a = a.model_copy(update={"selected_options": selected, "text_answer": ""})
        else:
            a = a.model_copy(update={"selected_options": [], "text_answer": (a.text_answer or "").strip()})
        by_question[q.id] = a

    missing = first_unanswered(questions, by_question)
    if missing is not None:
        raise ValidationError(
            f"Please answer all questions before submitting (question {missing + 1} is unanswered)",
            field=f"answers[{missing}]",
        )

    return [by_question[q.id] for q in questions]
