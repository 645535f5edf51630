from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from .rules import QuestionType

# Inputs stay permissive: rules.validate_quiz_draft reports problems per field.


class OptionIn(BaseModel):
    id: Optional[int] = None
    text: str = ""
    is_correct: bool = False


class QuestionIn(BaseModel):
    id: Optional[int] = None
    text: str = ""
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    points: int = 1
    options: list[OptionIn] = Field(default_factory=list)


class QuizIn(BaseModel):
    title: str = ""
    description: str = ""
    questions: list[QuestionIn] = Field(default_factory=list)


class OptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    text: str
    is_correct: bool = False


class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    text: str
    question_type: QuestionType
    points: int
    options: list[OptionOut] = Field(default_factory=list)


class QuizOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    module_id: int
    title: str
    description: str
    is_published: bool
    created_by: str
    created_at: datetime
    updated_at: datetime
    questions: list[QuestionOut] = Field(default_factory=list)


class StudentQuizSummary(BaseModel):
    id: int
    title: str
    description: str
    question_count: int
    max_score: int
    submission_id: Optional[int] = None
    is_graded: bool = False
    score: Optional[int] = None


class StudentQuizListOut(BaseModel):
    quizzes: list[StudentQuizSummary] = Field(default_factory=list)
    message: Optional[str] = None


class AnswerIn(BaseModel):
    question_id: int
    selected_options: list[int] = Field(default_factory=list)
    text_answer: str = ""

    @field_validator("text_answer", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or ""


class SubmitQuizIn(BaseModel):
    answers: list[AnswerIn]


class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_id: int
    selected_options: list[int] = Field(default_factory=list)
    text_answer: str = ""
    is_correct: bool = False


class SubmissionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quiz_id: int
    student_id: str
    answers: list[AnswerOut] = Field(default_factory=list)
    submitted_at: datetime
    is_graded: bool
    score: int
    max_score: int
    teacher_feedback: str = ""
    graded_at: Optional[datetime] = None

    @computed_field
    @property
    def status(self) -> str:
        return "Graded" if self.is_graded else "Needs Grading"


class StudentSubmissionOut(SubmissionOut):
    quiz: QuizOut


class SubmitQuizOut(BaseModel):
    submission: SubmissionOut
    is_retake: bool
    message: str


class GradeIn(BaseModel):
    score: int
    teacher_feedback: str = ""

    @field_validator("teacher_feedback", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v or ""
