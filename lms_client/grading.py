import logging
from typing import Optional, Union

from quiz_service.schemas import QuizOut, SubmissionOut
from .errors import NotFoundError, ValidationError
from .review import ReviewItem, review_submission

logger = logging.getLogger("lms_client")


def check_score(score: Union[int, str, None], max_score: int) -> int:
    """The server's range check, run before anything is sent."""
    if isinstance(score, str):
        score = score.strip()
        if not score.lstrip("-").isdigit():
            raise ValidationError("Score must be a whole number", field="score")
        score = int(score)
    if score is None:
        raise ValidationError("Score is required", field="score")
    if score < 0 or score > max_score:
        raise ValidationError(f"Score must be between 0 and {max_score}", field="score")
    return score


class GradingDesk:
    """Teacher view of one quiz's submissions."""

    def __init__(self, api, quiz_id: int):
        self.api = api
        self.quiz_id = quiz_id
        self.quiz: Optional[QuizOut] = None
        self.submissions: list[SubmissionOut] = []

    async def load(self) -> list[SubmissionOut]:
        self.quiz = await self.api.get_quiz(self.quiz_id)
        self.submissions = await self.api.get_quiz_submissions(self.quiz_id)
        return self.submissions

    @property
    def needs_grading(self) -> list[SubmissionOut]:
        return [s for s in self.submissions if not s.is_graded]

    @property
    def graded(self) -> list[SubmissionOut]:
        return [s for s in self.submissions if s.is_graded]

    def find(self, submission_id: int) -> SubmissionOut:
        for s in self.submissions:
            if s.id == submission_id:
                return s
        raise NotFoundError("Submission not found")

    def review(self, submission_id: int) -> list[ReviewItem]:
        return review_submission(self.quiz, self.find(submission_id))

    async def grade(self, submission_id: int, score, teacher_feedback: str = "") -> SubmissionOut:
        current = self.find(submission_id)
        value = check_score(score, current.max_score)

        updated = await self.api.grade_submission(submission_id, value, teacher_feedback or "")
        self.submissions = [updated if s.id == submission_id else s for s in self.submissions]
        logger.info("Submission %s graded %d/%d", submission_id, updated.score, updated.max_score)
        return updated
