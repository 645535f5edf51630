import logging
import os
from typing import Any, Optional, Union

import httpx

from module_service.schemas import (
    ChapterIn,
    ChapterOut,
    DiscardOut,
    EnrollmentOut,
    FileRef,
    ModuleDetailOut,
    ModuleSummaryOut,
    ReferenceOut,
    SyllabusOut,
    UploadOut,
)
from quiz_service.rules import validate_quiz_draft
from quiz_service.schemas import (
    AnswerIn,
    QuizIn,
    QuizOut,
    StudentQuizListOut,
    StudentSubmissionOut,
    SubmissionOut,
    SubmitQuizOut,
)
from .errors import AuthError, IncorrectPasswordError, TransportError, error_from_response
from .session import Session

logger = logging.getLogger("lms_client")

DEV_API_URL = "http://localhost:5000/api"
DEFAULT_TIMEOUT = 10.0
PASSWORD_PATH = "/auth/password"


def resolve_api_url(env: Optional[str] = None) -> str:
    """`/api` on the public origin in production, the local dev server otherwise."""
    env = (env if env is not None else os.getenv("LMS_ENV", "development")).strip().lower()
    if env == "production":
        origin = os.getenv("LMS_PUBLIC_ORIGIN", "").strip()
        if not origin:
            raise RuntimeError("Missing required environment variable: LMS_PUBLIC_ORIGIN")
        return origin.rstrip("/") + "/api"
    return DEV_API_URL


class ApiClient:
    """
    Async client for the learning hub API.

    Every call carries the session's bearer token. A 401 signs the session out
    and raises `AuthError(login_required=True)`, except on a password change,
    where it means the current password was wrong.
    """

    def __init__(
        self,
        session: Session,
        base_url: Optional[str] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session = session
        self.base_url = (base_url or resolve_api_url()).rstrip("/")
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -------------------------
    # Plumbing
    # -------------------------

    def _headers(self) -> dict[str, str]:
        if self.session.token:
            return {"Authorization": f"Bearer {self.session.token}"}
        return {}

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            resp = await self._http.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"Could not reach the server ({e.__class__.__name__})", cause=e)

        if resp.status_code == 401:
            err = error_from_response(resp)
            if path.startswith(PASSWORD_PATH):
                raise IncorrectPasswordError(err.message or "Current password is incorrect")
            logger.info("Session rejected on %s %s, signing out", method, path)
            self.session.clear()
            raise AuthError(err.message, login_required=True)

        if resp.status_code >= 400:
            raise error_from_response(resp)
        return resp

    async def _json(self, method: str, path: str, **kwargs) -> Any:
        resp = await self._send(method, path, **kwargs)
        return resp.json() if resp.content else None

    # -------------------------
    # Auth
    # -------------------------

    async def login(self, email: str, password: str) -> dict[str, Any]:
        data = await self._json("POST", "/auth/login", json={"email": email, "password": password})
        token = data.get("token") or data.get("access_token")
        self.session.sign_in(token, data.get("user"))
        return data

    async def change_password(self, current_password: str, new_password: str) -> dict[str, Any]:
        return await self._json(
            "PUT", PASSWORD_PATH, json={"current_password": current_password, "new_password": new_password}
        )

    # -------------------------
    # Teacher: modules and content
    # -------------------------

    async def get_assigned_modules(self) -> list[ModuleSummaryOut]:
        data = await self._json("GET", "/teacher/modules")
        return [ModuleSummaryOut.model_validate(m) for m in data]

    async def get_module_details(self, module_id: int) -> ModuleDetailOut:
        return ModuleDetailOut.model_validate(await self._json("GET", f"/teacher/modules/{module_id}"))

    async def add_chapter(self, module_id: int, title: str, content: str = "") -> ChapterOut:
        data = await self._json("POST", f"/teacher/modules/{module_id}/chapters", json={"title": title, "content": content})
        return ChapterOut.model_validate(data)

    async def update_chapters(self, module_id: int, chapters: list[ChapterIn]) -> ModuleDetailOut:
        body = {"chapters": [c.model_dump() for c in chapters]}
        return ModuleDetailOut.model_validate(await self._json("PUT", f"/teacher/modules/{module_id}/chapters", json=body))

    async def delete_chapter(self, module_id: int, index: int) -> None:
        await self._send("DELETE", f"/teacher/modules/{module_id}/chapters/{index}")

    async def update_syllabus(
        self, module_id: int, content: Optional[str] = None, files: Optional[list[FileRef]] = None
    ) -> SyllabusOut:
        body: dict[str, Any] = {"content": content}
        if files is not None:
            body["files"] = [f.model_dump() for f in files]
        return SyllabusOut.model_validate(await self._json("PUT", f"/teacher/modules/{module_id}/syllabus", json=body))

    async def add_reference(self, module_id: int, title: str, description: str = "") -> ReferenceOut:
        data = await self._json(
            "POST", f"/teacher/modules/{module_id}/references", json={"title": title, "description": description}
        )
        return ReferenceOut.model_validate(data)

    async def update_reference(
        self, module_id: int, index: int, title: Optional[str] = None, description: Optional[str] = None
    ) -> ReferenceOut:
        data = await self._json(
            "PUT",
            f"/teacher/modules/{module_id}/references/{index}",
            json={"title": title, "description": description},
        )
        return ReferenceOut.model_validate(data)

    async def delete_reference(self, module_id: int, index: int) -> None:
        await self._send("DELETE", f"/teacher/modules/{module_id}/references/{index}")

    async def discard_temp_files(self, module_id: int) -> DiscardOut:
        return DiscardOut.model_validate(await self._json("POST", f"/teacher/modules/{module_id}/discard-temp-files"))

    async def upload_file(
        self,
        module_id: int,
        target: str,
        filename: str,
        content: Union[bytes, Any],
        *,
        index: Optional[int] = None,
        file_type: str = "pdf",
        custom_name: Optional[str] = None,
    ) -> UploadOut:
        """Upload one file to a chapter, the syllabus or a reference."""
        if target == "syllabus":
            path = f"/teacher/modules/{module_id}/syllabus/files"
        elif target in ("chapter", "reference"):
            if index is None:
                raise ValueError(f"{target} uploads need an index")
            path = f"/teacher/modules/{module_id}/{target}s/{index}/files"
        else:
            raise ValueError(f"Unknown upload target: {target}")

        data = {"file_type": file_type}
        if custom_name:
            data["custom_name"] = custom_name
        body = await self._json("POST", path, files={"file": (filename, content)}, data=data)
        return UploadOut.model_validate(body)

    # -------------------------
    # Teacher: quizzes and grading
    # -------------------------

    async def create_quiz(self, module_id: int, quiz: QuizIn) -> QuizOut:
        validate_quiz_draft(quiz)
        data = await self._json("POST", f"/teacher/modules/{module_id}/quizzes", json=quiz.model_dump(mode="json"))
        return QuizOut.model_validate(data)

    async def get_module_quizzes(self, module_id: int) -> list[QuizOut]:
        data = await self._json("GET", f"/teacher/modules/{module_id}/quizzes")
        return [QuizOut.model_validate(q) for q in data]

    async def get_quiz(self, quiz_id: int) -> QuizOut:
        return QuizOut.model_validate(await self._json("GET", f"/teacher/quizzes/{quiz_id}"))

    async def update_quiz(self, quiz_id: int, quiz: QuizIn) -> QuizOut:
        validate_quiz_draft(quiz)
        data = await self._json("PUT", f"/teacher/quizzes/{quiz_id}", json=quiz.model_dump(mode="json"))
        return QuizOut.model_validate(data)

    async def delete_quiz(self, quiz_id: int) -> None:
        await self._send("DELETE", f"/teacher/quizzes/{quiz_id}")

    async def get_quiz_submissions(self, quiz_id: int) -> list[SubmissionOut]:
        data = await self._json("GET", f"/teacher/quizzes/{quiz_id}/submissions")
        return [SubmissionOut.model_validate(s) for s in data]

    async def grade_submission(self, submission_id: int, score: int, teacher_feedback: str = "") -> SubmissionOut:
        data = await self._json(
            "PUT",
            f"/teacher/submissions/{submission_id}/grade",
            json={"score": score, "teacher_feedback": teacher_feedback},
        )
        return SubmissionOut.model_validate(data)

    # -------------------------
    # Student
    # -------------------------

    async def get_available_modules(self, academic_year: Optional[str] = None) -> list[ModuleSummaryOut]:
        year = academic_year or self.session.academic_year
        data = await self._json("GET", "/student/available-modules", params={"academic_year": year} if year else None)
        return [ModuleSummaryOut.model_validate(m) for m in data]

    async def enroll(self, module_id: int) -> EnrollmentOut:
        return EnrollmentOut.model_validate(await self._json("POST", f"/student/enroll/{module_id}"))

    async def get_enrolled_modules(self) -> list[ModuleSummaryOut]:
        data = await self._json("GET", "/student/my-modules")
        return [ModuleSummaryOut.model_validate(m) for m in data]

    async def get_module_content(self, module_id: int) -> ModuleDetailOut:
        return ModuleDetailOut.model_validate(await self._json("GET", f"/student/modules/{module_id}/content"))

    async def get_student_module_quizzes(self, module_id: int) -> StudentQuizListOut:
        return StudentQuizListOut.model_validate(await self._json("GET", f"/student/modules/{module_id}/quizzes"))

    async def get_student_quiz(self, quiz_id: int) -> QuizOut:
        return QuizOut.model_validate(await self._json("GET", f"/student/quizzes/{quiz_id}"))

    async def submit_quiz(self, quiz_id: int, answers: list[AnswerIn]) -> SubmitQuizOut:
        body = {"answers": [a.model_dump() for a in answers]}
        return SubmitQuizOut.model_validate(await self._json("POST", f"/student/quizzes/{quiz_id}/submit", json=body))

    async def get_submission(self, submission_id: int) -> StudentSubmissionOut:
        return StudentSubmissionOut.model_validate(await self._json("GET", f"/student/submissions/{submission_id}"))

    # -------------------------
    # Files
    # -------------------------

    async def download(self, file_id: int, *, attachment: bool = True) -> bytes:
        resp = await self._send("GET", f"/files/{file_id}", params={"download": "true" if attachment else "false"})
        return resp.content
