from dataclasses import dataclass
from typing import Iterable, Optional

from quiz_service.rules import QuestionType
from quiz_service.schemas import AnswerOut, QuizOut, SubmissionOut

ANSWER_NOT_AVAILABLE = "Answer not available"
NO_ANSWER = "No answer"
MANUALLY_GRADED = "Graded by your teacher"


@dataclass
class ReviewItem:
    index: int
    question_text: str
    question_type: Optional[QuestionType]
    your_answer: str
    correct_answer: str
    is_correct: bool
    points: int = 0


def render_answer(question, selected_options: Iterable[int], text_answer: str) -> str:
    """Student's answer as text; options that no longer exist make it unavailable."""
    qtype = QuestionType(question.question_type)
    if qtype is QuestionType.MULTIPLE_CHOICE or qtype is QuestionType.TRUE_FALSE:
        texts = {o.id: o.text for o in question.options}
        selected = list(selected_options or [])
        if not selected:
            return NO_ANSWER
        if any(opt_id not in texts for opt_id in selected):
            return ANSWER_NOT_AVAILABLE
        return ", ".join(texts[opt_id] for opt_id in selected)
    if qtype is QuestionType.SHORT_ANSWER:
        return (text_answer or "").strip() or NO_ANSWER
    raise AssertionError(f"unhandled question type {qtype!r}")


def render_correct(question) -> str:
    qtype = QuestionType(question.question_type)
    if qtype is QuestionType.MULTIPLE_CHOICE or qtype is QuestionType.TRUE_FALSE:
        correct = [o.text for o in question.options if o.is_correct]
        return ", ".join(correct) if correct else ANSWER_NOT_AVAILABLE
    if qtype is QuestionType.SHORT_ANSWER:
        return MANUALLY_GRADED
    raise AssertionError(f"unhandled question type {qtype!r}")


def _unavailable(index: int, answer: AnswerOut) -> ReviewItem:
    return ReviewItem(
        index=index,
        question_text="This question is no longer part of the quiz",
        question_type=None,
        your_answer=ANSWER_NOT_AVAILABLE,
        correct_answer=ANSWER_NOT_AVAILABLE,
        is_correct=answer.is_correct,
    )


def review_submission(quiz: QuizOut, submission: SubmissionOut) -> list[ReviewItem]:
    """Pair each stored answer with the quiz as it is now, surviving edits made after submitting."""
    by_id = {q.id: q for q in quiz.questions}
    items = []
    for i, a in enumerate(submission.answers):
        q = by_id.get(a.question_id)
        if q is None:
            items.append(_unavailable(i, a))
            continue
        items.append(
            ReviewItem(
                index=i,
                question_text=q.text,
                question_type=QuestionType(q.question_type),
                your_answer=render_answer(q, a.selected_options, a.text_answer),
                correct_answer=render_correct(q),
                is_correct=a.is_correct,
                points=q.points,
            )
        )
    return items


def review_local(taker) -> list[ReviewItem]:
    """Review items for a quiz just taken, from the local answers and local marks."""
    marks = {r.question_id: r.is_correct for r in taker.local_result.results} if taker.local_result else {}
    items = []
    for i, q in enumerate(taker.questions):
        a = taker.answers.get(q.id)
        items.append(
            ReviewItem(
                index=i,
                question_text=q.text,
                question_type=QuestionType(q.question_type),
                your_answer=render_answer(q, a.selected_options if a else [], a.text_answer if a else ""),
                correct_answer=render_correct(q),
                is_correct=marks.get(q.id, False),
                points=q.points,
            )
        )
    return items
