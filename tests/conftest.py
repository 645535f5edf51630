import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

import gateway.middleware
import quiz_service.models  # noqa: F401
from gateway.main import create_app
from module_service import crud as module_crud
from shared.auth import VerifiedUser
from shared.config import Settings
from shared.database import Base, make_engine, make_session_factory

USERS = {
    "teacher-token": VerifiedUser(sub="t1", email="teacher@example.com", role="teacher"),
    "other-teacher-token": VerifiedUser(sub="t2", email="other@example.com", role="teacher"),
    "student-token": VerifiedUser(sub="s1", email="student@example.com", role="student", level="lmd1"),
    "student2-token": VerifiedUser(sub="s2", email="student2@example.com", role="student", level="lmd1"),
    "pending-token": VerifiedUser(sub="s9", email="pending@example.com", role="student", is_approved=False),
    "admin-token": VerifiedUser(sub="a1", email="admin@example.com", role="admin"),
}


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers():
    return auth


@pytest.fixture
def settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("AUTH_SERVICE_URL", "http://auth.test")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("MAX_FILE_SIZE", "2048")
    monkeypatch.setenv("RETAKE_GRADING_POLICY", "reset")
    return Settings()


@pytest.fixture
def SessionLocal(settings):
    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def db(SessionLocal):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def app(settings, SessionLocal, monkeypatch):
    async def fake_verify(auth_service_url, token):
        user = USERS.get(token)
        if user is None:
            raise HTTPException(status_code=401, detail="Invalid or expired token")
        return user

    monkeypatch.setattr(gateway.middleware, "verify_token", fake_verify)
    return create_app(settings, SessionLocal)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def module_id(db):
    m = module_crud.create_module(
        db,
        title="Algorithms",
        academic_year="2024-2025",
        level="lmd1",
        created_by="a1",
        teacher_id="t1",
    )
    return m.id


@pytest.fixture
def enrolled(db, module_id):
    module_crud.enroll(db, module_id, "s1")
    return module_id


@pytest.fixture
def quiz_payload():
    def make(points=(1, 1)):
        return {
            "title": "Basics",
            "description": "Warm-up",
            "questions": [
                {
                    "text": "Pick B",
                    "question_type": "multiple-choice",
                    "points": points[0],
                    "options": [
                        {"text": "A", "is_correct": False},
                        {"text": "B", "is_correct": True},
                        {"text": "C", "is_correct": False},
                    ],
                },
                {
                    "text": "The sky is blue",
                    "question_type": "true-false",
                    "points": points[1],
                    "options": [
                        {"text": "True", "is_correct": True},
                        {"text": "False", "is_correct": False},
                    ],
                },
            ],
        }

    return make
