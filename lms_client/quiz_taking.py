"""
Student side of a quiz: a one-question-at-a-time wizard.

    LOADING -> IN_PROGRESS(step) -> REVIEWING(step)

While in progress the student answers questions in order. Submitting scores
the objective answers locally (shown right away, whatever the server says)
and then sends the answer set. Review mode walks the questions again with the
correct answers next to the student's; step -1 is the results page.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from quiz_service.rules import QuestionType, first_unanswered, is_answer_correct
from quiz_service.schemas import AnswerIn, QuizOut, SubmissionOut
from .errors import ForbiddenError, LmsError, NotFoundError, TransportError, ValidationError

logger = logging.getLogger("lms_client")

RESULTS_STEP = -1
NO_QUESTIONS = "This quiz has no questions."
SAVE_FAILED = "Failed to save quiz to server. Your results are shown below but not saved."


class Phase(Enum):
    LOADING = "loading"
    IN_PROGRESS = "in_progress"
    REVIEWING = "reviewing"


@dataclass
class QuestionResult:
    question_id: int
    answered: bool
    is_correct: bool


@dataclass
class LocalResult:
    results: list[QuestionResult] = field(default_factory=list)

    @property
    def correct(self) -> int:
        return sum(1 for r in self.results if r.is_correct)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def percentage(self) -> int:
        return round(self.correct / self.total * 100) if self.total else 0

    def summary(self) -> str:
        return f"{self.correct}/{self.total} ({self.percentage}%)"


class QuizTaker:
    def __init__(self):
        self.phase = Phase.LOADING
        self.quiz: Optional[QuizOut] = None
        self.step = 0
        self.load_error: Optional[str] = None
        self.answers: dict[int, AnswerIn] = {}

        self.local_result: Optional[LocalResult] = None
        self.submission: Optional[SubmissionOut] = None
        self.is_retake = False
        self.notice: Optional[str] = None

    # ---- loading ----

    async def load(self, api, quiz_id: int) -> bool:
        self.phase = Phase.LOADING
        try:
            quiz = await api.get_student_quiz(quiz_id)
        except NotFoundError:
            self.load_error = "Quiz not found or no longer available."
            return False
        except ForbiddenError as e:
            self.load_error = e.message or "You do not have access to this quiz."
            return False
        return self.start(quiz)

    def start(self, quiz: QuizOut) -> bool:
        self.quiz = quiz
        self.answers = {}
        self.step = 0
        if not quiz.questions:
            self.load_error = NO_QUESTIONS
            return False
        self.load_error = None
        self.phase = Phase.IN_PROGRESS
        return True

    # ---- navigation ----

    @property
    def questions(self) -> list:
        return self.quiz.questions if self.quiz else []

    @property
    def question(self):
        if self.step == RESULTS_STEP or not self.questions:
            return None
        return self.questions[self.step]

    @property
    def is_last(self) -> bool:
        return self.step == len(self.questions) - 1

    def next(self) -> None:
        if self.phase is Phase.IN_PROGRESS:
            if self.step < len(self.questions) - 1:
                self.step += 1
        elif self.phase is Phase.REVIEWING:
            if self.step == RESULTS_STEP:
                return
            self.step = RESULTS_STEP if self.is_last else self.step + 1

    def previous(self) -> None:
        if self.phase is Phase.IN_PROGRESS:
            if self.step > 0:
                self.step -= 1
        elif self.phase is Phase.REVIEWING:
            if self.step == RESULTS_STEP:
                self.step = len(self.questions) - 1
            elif self.step > 0:
                self.step -= 1

    def jump_to(self, index: int) -> None:
        if self.phase is not Phase.REVIEWING:
            raise ValidationError("Questions can only be jumped to from the results page")
        if index != RESULTS_STEP and not 0 <= index < len(self.questions):
            raise ValidationError(f"No question {index + 1} in this quiz", field="step")
        self.step = index

    # ---- answering ----

    def _current_for_answering(self):
        if self.phase is not Phase.IN_PROGRESS:
            raise ValidationError("This quiz has already been submitted")
        return self.question

    def select_option(self, option_id: int) -> None:
        """Pick an option. Multiple-choice advances to the next question; picking the
        chosen true-false option again clears the answer."""
        q = self._current_for_answering()
        qtype = QuestionType(q.question_type)
        if not qtype.is_objective:
            raise ValidationError("Short-answer questions take a text answer", field="text_answer")
        if option_id not in {o.id for o in q.options}:
            raise ValidationError(f"Option {option_id} is not part of this question", field="selected_options")

        current = self.answers.get(q.id)
        if not qtype.auto_advances and current is not None and current.selected_options == [option_id]:
            del self.answers[q.id]
            return

        self.answers[q.id] = AnswerIn(question_id=q.id, selected_options=[option_id])
        if qtype.auto_advances and not self.is_last:
            self.step += 1

    def set_text_answer(self, text: str) -> None:
        q = self._current_for_answering()
        if QuestionType(q.question_type).is_objective:
            raise ValidationError("Pick one of the options for this question", field="selected_options")
        self.answers[q.id] = AnswerIn(question_id=q.id, text_answer=text or "")

    @property
    def can_submit(self) -> bool:
        return self.phase is Phase.IN_PROGRESS and first_unanswered(self.questions, self.answers) is None

    def score_locally(self) -> LocalResult:
        results = []
        for q in self.questions:
            a = self.answers.get(q.id)
            selected = a.selected_options if a else []
            results.append(QuestionResult(question_id=q.id, answered=a is not None, is_correct=is_answer_correct(q, selected)))
        return LocalResult(results=results)

    # ---- submitting ----

    async def submit(self, api) -> LocalResult:
        """
        Score locally, switch to the results page, then send the answers.

        A failed save never hides the local result; it only sets `notice`.
        """
        if self.phase is not Phase.IN_PROGRESS:
            raise ValidationError("This quiz has already been submitted")
        missing = first_unanswered(self.questions, self.answers)
        if missing is not None:
            self.step = missing
            raise ValidationError(
                f"Please answer question {missing + 1} before submitting", field=f"answers[{missing}]"
            )

        self.local_result = self.score_locally()
        self.phase = Phase.REVIEWING
        self.step = RESULTS_STEP
        self.notice = None

        ordered = [self.answers[q.id] for q in self.questions]
        try:
            resp = await api.submit_quiz(self.quiz.id, ordered)
        except TransportError as e:
            logger.warning("Quiz %s submit failed: %s", self.quiz.id, e.message)
            self.notice = SAVE_FAILED
        except LmsError as e:
            logger.warning("Quiz %s submit rejected: %s", self.quiz.id, e.message)
            self.notice = e.message or SAVE_FAILED
        else:
            self.submission = resp.submission
            self.is_retake = resp.is_retake
            self.notice = resp.message
        return self.local_result
