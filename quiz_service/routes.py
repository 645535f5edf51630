from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from shared.auth import VerifiedUser, require_role
from shared.database import db_dependency
from . import crud
from .schemas import (
    GradeIn,
    QuizIn,
    QuizOut,
    StudentQuizListOut,
    StudentSubmissionOut,
    SubmissionOut,
    SubmitQuizIn,
    SubmitQuizOut,
)


def build_router(SessionLocal, settings) -> APIRouter:
    router = APIRouter()
    get_db = db_dependency(SessionLocal)
    teacher = require_role("teacher")
    student = require_role("student")

    # ---- Teacher: authoring ----

    @router.post(
        "/teacher/modules/{module_id}/quizzes",
        response_model=QuizOut,
        status_code=status.HTTP_201_CREATED,
        tags=["Quizzes"],
    )
    def create(module_id: int, payload: QuizIn, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        return crud.create_quiz(db, module_id, user.sub, payload)

    @router.get("/teacher/modules/{module_id}/quizzes", response_model=list[QuizOut], tags=["Quizzes"])
    def list_for_module(module_id: int, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        return crud.list_module_quizzes(db, module_id, user.sub)

    @router.get("/teacher/quizzes/{quiz_id}", response_model=QuizOut, tags=["Quizzes"])
    def get_one(quiz_id: int, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        return crud.get_owned_quiz(db, quiz_id, user.sub)

    @router.put("/teacher/quizzes/{quiz_id}", response_model=QuizOut, tags=["Quizzes"])
    def update(quiz_id: int, payload: QuizIn, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        return crud.update_quiz(db, quiz_id, user.sub, payload)

    @router.delete("/teacher/quizzes/{quiz_id}", response_model=dict, tags=["Quizzes"])
    def remove(quiz_id: int, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        crud.delete_quiz(db, quiz_id, user.sub)
        return {"deleted": True}

    # ---- Teacher: grading ----

    @router.get("/teacher/quizzes/{quiz_id}/submissions", response_model=list[SubmissionOut], tags=["Grading"])
    def submissions(quiz_id: int, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)):
        return crud.list_submissions(db, quiz_id, user.sub)

    @router.put("/teacher/submissions/{submission_id}/grade", response_model=SubmissionOut, tags=["Grading"])
    def grade(
        submission_id: int, payload: GradeIn, user: VerifiedUser = Depends(teacher), db: Session = Depends(get_db)
    ):
        return crud.grade_submission(db, submission_id, user.sub, payload.score, payload.teacher_feedback)

    # ---- Student ----

    @router.get("/student/modules/{module_id}/quizzes", response_model=StudentQuizListOut, tags=["Quizzes"])
    def module_quizzes(module_id: int, user: VerifiedUser = Depends(student), db: Session = Depends(get_db)):
        return crud.student_quizzes(db, module_id, user.sub)

    @router.get("/student/quizzes/{quiz_id}", response_model=QuizOut, tags=["Quizzes"])
    def take(quiz_id: int, user: VerifiedUser = Depends(student), db: Session = Depends(get_db)):
        return crud.student_quiz(db, quiz_id, user.sub)

    @router.post("/student/quizzes/{quiz_id}/submit", response_model=SubmitQuizOut, tags=["Quizzes"])
    def submit(
        quiz_id: int,
        payload: SubmitQuizIn,
        response: Response,
        user: VerifiedUser = Depends(student),
        db: Session = Depends(get_db),
    ):
        sub, is_retake = crud.submit_quiz(db, quiz_id, user.sub, payload.answers, settings.retake_grading_policy)
        if not is_retake:
            response.status_code = status.HTTP_201_CREATED
        return SubmitQuizOut(
            submission=SubmissionOut.model_validate(sub),
            is_retake=is_retake,
            message="Quiz retaken successfully!" if is_retake else "Quiz submitted successfully!",
        )

    @router.get("/student/submissions/{submission_id}", response_model=StudentSubmissionOut, tags=["Quizzes"])
    def my_submission(submission_id: int, user: VerifiedUser = Depends(student), db: Session = Depends(get_db)):
        sub = crud.get_own_submission(db, submission_id, user.sub)
        return StudentSubmissionOut.model_validate(sub)

    return router
