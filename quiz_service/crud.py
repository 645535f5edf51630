import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from module_service.crud import get_assigned_module, get_module, is_enrolled
from module_service.models import Module
from shared.database import utcnow
from shared.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from .models import AnswerOption, Question, Quiz, QuizSubmission, SubmissionAnswer
from .rules import QuestionType, is_answer_correct, max_score, normalize_answer_set, validate_quiz_draft
from .schemas import AnswerIn, QuestionIn, QuizIn, StudentQuizListOut, StudentQuizSummary

logger = logging.getLogger(__name__)

UNPUBLISHED_MESSAGE = "There are quizzes for this module, but they have not been published yet."


# ---- Authoring ----

def _teacher_module(db: Session, module_id: int, teacher_id: str) -> Module:
    try:
        return get_assigned_module(db, module_id, teacher_id)
    except NotFoundError:
        raise NotFoundError("Module not found or you are not assigned to it")


def _build_options(q: QuestionIn, existing: Optional[Question]) -> list[AnswerOption]:
    if not QuestionType(q.question_type).is_objective:
        return []
    keep = {o.id: o for o in existing.options} if existing is not None else {}
    out = []
    for pos, o in enumerate(q.options):
        opt = keep.pop(o.id, None) if o.id is not None else None
        if opt is None:
            opt = AnswerOption()
        opt.position = pos
        opt.text = o.text.strip()
        opt.is_correct = bool(o.is_correct)
        out.append(opt)
    return out


def _build_questions(quiz: Quiz, payload: QuizIn) -> list[Question]:
    keep = {q.id: q for q in quiz.questions}
    out = []
    for pos, q in enumerate(payload.questions):
        question = keep.pop(q.id, None) if q.id is not None else None
        if question is None:
            question = Question()
        question.position = pos
        question.text = q.text.strip()
        question.question_type = QuestionType(q.question_type).value
        question.points = q.points
        question.options = _build_options(q, question if question.id else None)
        out.append(question)
    return out


def create_quiz(db: Session, module_id: int, teacher_id: str, payload: QuizIn) -> Quiz:
    _teacher_module(db, module_id, teacher_id)
    validate_quiz_draft(payload)

    quiz = Quiz(
        module_id=module_id,
        title=payload.title.strip(),
        description=(payload.description or "").strip(),
        is_published=True,
        created_by=teacher_id,
    )
    quiz.questions = _build_questions(quiz, payload)
    db.add(quiz)
    db.commit()
    db.refresh(quiz)
    logger.info("Quiz %s created in module %s by %s", quiz.id, module_id, teacher_id)
    return quiz


def list_module_quizzes(db: Session, module_id: int, teacher_id: str) -> list[Quiz]:
    _teacher_module(db, module_id, teacher_id)
    return db.query(Quiz).filter(Quiz.module_id == module_id).order_by(Quiz.created_at.desc(), Quiz.id.desc()).all()


def get_quiz(db: Session, quiz_id: int) -> Quiz | None:
    return db.query(Quiz).filter(Quiz.id == quiz_id).first()


def get_owned_quiz(db: Session, quiz_id: int, teacher_id: str) -> Quiz:
    quiz = get_quiz(db, quiz_id)
    if not quiz:
        raise NotFoundError("Quiz not found")
    m = get_module(db, quiz.module_id)
    if m is None or m.teacher_id != teacher_id:
        raise ForbiddenError("You are not authorized to access this quiz")
    return quiz


def update_quiz(db: Session, quiz_id: int, teacher_id: str, payload: QuizIn) -> Quiz:
    quiz = get_owned_quiz(db, quiz_id, teacher_id)
    validate_quiz_draft(payload)

    quiz.title = payload.title.strip()
    quiz.description = (payload.description or "").strip()
    quiz.questions = _build_questions(quiz, payload)
    quiz.is_published = True
    quiz.updated_at = utcnow()
    db.commit()
    db.refresh(quiz)
    return quiz


def delete_quiz(db: Session, quiz_id: int, teacher_id: str) -> None:
    quiz = get_owned_quiz(db, quiz_id, teacher_id)
    db.delete(quiz)
    db.commit()
    logger.info("Quiz %s deleted with its submissions", quiz_id)


# ---- Student side ----

def student_quizzes(db: Session, module_id: int, student_id: str) -> StudentQuizListOut:
    if not get_module(db, module_id):
        raise NotFoundError("Module not found")
    if not is_enrolled(db, module_id, student_id):
        raise ForbiddenError("You are not enrolled in this module")

    quizzes = db.query(Quiz).filter(Quiz.module_id == module_id).order_by(Quiz.created_at.desc(), Quiz.id.desc()).all()
    published = [q for q in quizzes if q.is_published]
    if quizzes and not published:
        return StudentQuizListOut(quizzes=[], message=UNPUBLISHED_MESSAGE)

    out = []
    for q in published:
        sub = get_student_submission(db, q.id, student_id)
        out.append(
            StudentQuizSummary(
                id=q.id,
                title=q.title,
                description=q.description,
                question_count=len(q.questions),
                max_score=max_score(q.questions),
                submission_id=sub.id if sub else None,
                is_graded=bool(sub and sub.is_graded),
                score=sub.score if sub and sub.is_graded else None,
            )
        )
    return StudentQuizListOut(quizzes=out)


def student_quiz(db: Session, quiz_id: int, student_id: str) -> Quiz:
    quiz = get_quiz(db, quiz_id)
    if not quiz or not quiz.is_published:
        raise NotFoundError("Quiz not found")
    if not is_enrolled(db, quiz.module_id, student_id):
        raise ForbiddenError("You are not enrolled in this module")
    return quiz


def get_student_submission(db: Session, quiz_id: int, student_id: str) -> QuizSubmission | None:
    return (
        db.query(QuizSubmission)
        .filter(QuizSubmission.quiz_id == quiz_id, QuizSubmission.student_id == student_id)
        .first()
    )


def _store_answers(sub: QuizSubmission, quiz: Quiz, answers: list[AnswerIn]) -> None:
    by_id = {q.id: q for q in quiz.questions}
    sub.answers = [
        SubmissionAnswer(
            position=pos,
            question_id=a.question_id,
            selected_options=a.selected_options,
            text_answer=a.text_answer,
            is_correct=is_answer_correct(by_id[a.question_id], a.selected_options),
        )
        for pos, a in enumerate(answers)
    ]


def submit_quiz(
    db: Session, quiz_id: int, student_id: str, answers: list[AnswerIn], retake_policy: str = "reset"
) -> tuple[QuizSubmission, bool]:
    """
    Upsert the one live submission of `student_id` for `quiz_id`.

    Returns the submission and whether it replaced an earlier one. On a retake
    the grading state is reset or kept according to `retake_policy`.
    """
    quiz = get_quiz(db, quiz_id)
    if not quiz:
        raise NotFoundError("Quiz not found")
    if not quiz.is_published:
        raise ConflictError("This quiz is not available for submission")
    if not is_enrolled(db, quiz.module_id, student_id):
        raise ForbiddenError("You are not enrolled in this module")

    ordered = normalize_answer_set(list(quiz.questions), answers)
    total = max_score(quiz.questions)

    sub = get_student_submission(db, quiz_id, student_id)
    is_retake = sub is not None
    if sub is None:
        sub = QuizSubmission(quiz_id=quiz_id, student_id=student_id, score=0, is_graded=False, teacher_feedback="")
        db.add(sub)
        _store_answers(sub, quiz, ordered)
        sub.max_score = total
        sub.submitted_at = utcnow()
        try:
            db.commit()
        except IntegrityError:
            # lost the insert race; take the update path
            db.rollback()
            sub = get_student_submission(db, quiz_id, student_id)
            if sub is None:
                raise
            is_retake = True

    if is_retake:
        _store_answers(sub, quiz, ordered)
        sub.max_score = total
        sub.submitted_at = utcnow()
        if retake_policy == "reset":
            sub.is_graded = False
            sub.score = 0
            sub.teacher_feedback = ""
            sub.graded_at = None
        db.commit()
        logger.info("Quiz %s retaken by %s (grading %s)", quiz_id, student_id, retake_policy)

    db.refresh(sub)
    return sub, is_retake


def get_own_submission(db: Session, submission_id: int, student_id: str) -> QuizSubmission:
    sub = db.query(QuizSubmission).filter(QuizSubmission.id == submission_id).first()
    if not sub:
        raise NotFoundError("Submission not found")
    if sub.student_id != student_id:
        raise ForbiddenError("You are not authorized to view this submission")
    return sub


# ---- Grading ----

def list_submissions(db: Session, quiz_id: int, teacher_id: str) -> list[QuizSubmission]:
    get_owned_quiz(db, quiz_id, teacher_id)
    return (
        db.query(QuizSubmission)
        .filter(QuizSubmission.quiz_id == quiz_id)
        .order_by(QuizSubmission.submitted_at.desc(), QuizSubmission.id.desc())
        .all()
    )


def grade_submission(
    db: Session, submission_id: int, teacher_id: str, score: int, teacher_feedback: str = ""
) -> QuizSubmission:
    sub = db.query(QuizSubmission).filter(QuizSubmission.id == submission_id).first()
    if not sub:
        raise NotFoundError("Submission not found")
    get_owned_quiz(db, sub.quiz_id, teacher_id)

    if score < 0 or score > sub.max_score:
        raise ValidationError(f"Score must be between 0 and {sub.max_score}", field="score")

    sub.score = score
    sub.teacher_feedback = teacher_feedback or ""
    sub.is_graded = True
    sub.graded_at = utcnow()
    db.commit()
    db.refresh(sub)
    return sub
