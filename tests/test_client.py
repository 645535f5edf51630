import asyncio
import os
import subprocess
import sys
from pathlib import Path

import httpx
import pytest

from lms_client.api import DEV_API_URL, ApiClient, resolve_api_url
from lms_client.errors import (
    ApiError,
    AuthError,
    ConflictError,
    IncorrectPasswordError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from lms_client.grading import GradingDesk, check_score
from lms_client.guard import LatestOnly, Superseded
from lms_client.quiz_taking import NO_QUESTIONS, RESULTS_STEP, SAVE_FAILED, Phase, QuizTaker
from lms_client.review import ANSWER_NOT_AVAILABLE, review_local, review_submission
from lms_client.session import Session
from lms_client.uploads import MAX_UPLOAD_BYTES, upload_batch
from module_service.schemas import ContentFileOut, UploadOut
from quiz_service.schemas import AnswerOut, QuizIn, QuizOut, SubmissionOut, SubmitQuizOut

NOW = "2025-01-01T10:00:00"
ROOT = Path(__file__).resolve().parents[1]


def _quiz(question_types=("multiple-choice", "true-false"), quiz_id=1) -> QuizOut:
    questions = []
    for i, qtype in enumerate(question_types):
        qid = i + 1
        if qtype == "multiple-choice":
            options = [
                {"id": qid * 10 + 1, "text": "A", "is_correct": False},
                {"id": qid * 10 + 2, "text": "B", "is_correct": True},
            ]
        elif qtype == "true-false":
            options = [
                {"id": qid * 10 + 1, "text": "True", "is_correct": True},
                {"id": qid * 10 + 2, "text": "False", "is_correct": False},
            ]
        else:
            options = []
        questions.append({"id": qid, "text": f"Q{qid}", "question_type": qtype, "points": 1, "options": options})
    return QuizOut.model_validate(
        {
            "id": quiz_id,
            "module_id": 1,
            "title": "Quiz",
            "description": "",
            "is_published": True,
            "created_by": "t1",
            "created_at": NOW,
            "updated_at": NOW,
            "questions": questions,
        }
    )


def _submission(answers, max_score=2, sub_id=5) -> SubmissionOut:
    return SubmissionOut(
        id=sub_id,
        quiz_id=1,
        student_id="s1",
        answers=[AnswerOut(**a) for a in answers],
        submitted_at=NOW,
        is_graded=False,
        score=0,
        max_score=max_score,
    )


def _mock_client(handler, session=None) -> ApiClient:
    session = session or Session(token="tok", user={"role": "student"})
    return ApiClient(session, "http://lms.test/api", transport=httpx.MockTransport(handler))


class FakeApi:
    def __init__(self, quiz=None, submit_error=None, is_retake=False):
        self.quiz = quiz
        self.submit_error = submit_error
        self.is_retake = is_retake
        self.submitted = []

    async def get_student_quiz(self, quiz_id):
        if self.quiz is None:
            raise NotFoundError("Quiz not found")
        return self.quiz

    async def submit_quiz(self, quiz_id, answers):
        self.submitted.append(answers)
        if self.submit_error is not None:
            raise self.submit_error
        sub = _submission([a.model_dump() for a in answers])
        return SubmitQuizOut(
            submission=sub,
            is_retake=self.is_retake,
            message="Quiz retaken successfully!" if self.is_retake else "Quiz submitted successfully!",
        )


# -------------------------
# API client plumbing
# -------------------------

def test_api_url_depends_on_environment(monkeypatch):
    monkeypatch.setenv("LMS_PUBLIC_ORIGIN", "https://learn.example.org/")

    assert resolve_api_url("development") == DEV_API_URL
    assert resolve_api_url("production") == "https://learn.example.org/api"

    monkeypatch.delenv("LMS_PUBLIC_ORIGIN")
    with pytest.raises(RuntimeError):
        resolve_api_url("production")


def test_client_import_ignores_server_settings(tmp_path):
    # a fresh interpreter: the server config must not be loaded or validated
    env = dict(os.environ, RETAKE_GRADING_POLICY="merge", PYTHONPATH=str(ROOT))
    code = (
        "import sys, lms_client.api, lms_client.quiz_taking, lms_client.uploads; "
        "assert 'shared.config' not in sys.modules, 'server settings loaded'"
    )
    result = subprocess.run([sys.executable, "-c", code], cwd=tmp_path, env=env, capture_output=True, text=True)

    assert result.returncode == 0, result.stderr


def test_unauthorized_clears_session():
    session = Session(token="stale", user={"role": "student"}, academic_year="2024-2025")

    def handler(request):
        assert request.headers["Authorization"] == "Bearer stale"
        return httpx.Response(401, json={"detail": "Invalid or expired token"})

    async def run():
        async with _mock_client(handler, session) as api:
            await api.get_enrolled_modules()

    with pytest.raises(AuthError) as exc:
        asyncio.run(run())

    assert exc.value.login_required is True
    assert session.token is None
    assert session.academic_year is None


def test_password_change_401_keeps_session():
    session = Session(token="good", user={"role": "teacher"})

    def handler(request):
        assert request.url.path == "/api/auth/password"
        return httpx.Response(401, json={"detail": "Current password is incorrect"})

    async def run():
        async with _mock_client(handler, session) as api:
            await api.change_password("wrong", "new-password-123")

    with pytest.raises(IncorrectPasswordError) as exc:
        asyncio.run(run())

    assert exc.value.login_required is False
    assert session.token == "good"


@pytest.mark.parametrize(
    "status, body, error",
    [
        (400, {"detail": "Score must be between 0 and 10", "field": "score"}, ValidationError),
        (404, {"detail": "Quiz not found"}, NotFoundError),
        (409, {"detail": "This quiz is not available for submission"}, ConflictError),
        (500, {"detail": "boom"}, ApiError),
    ],
)
def test_error_statuses_map_to_taxonomy(status, body, error):
    def handler(request):
        return httpx.Response(status, json=body)

    async def run():
        async with _mock_client(handler) as api:
            await api.get_student_quiz(1)

    with pytest.raises(error) as exc:
        asyncio.run(run())
    assert exc.value.message == body["detail"]


def test_transport_failures_are_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async def run():
        async with _mock_client(handler) as api:
            await api.get_student_quiz(1)

    with pytest.raises(TransportError):
        asyncio.run(run())


def test_invalid_quiz_is_never_sent():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(201, json={})

    async def run():
        async with _mock_client(handler) as api:
            await api.create_quiz(1, QuizIn(title="", questions=[]))

    with pytest.raises(ValidationError) as exc:
        asyncio.run(run())
    assert exc.value.field == "title"
    assert calls == []


def test_latest_only_drops_superseded_results():
    guard = LatestOnly()
    applied = []

    async def slow(value, delay):
        await asyncio.sleep(delay)
        return value

    async def run():
        first = asyncio.create_task(guard.run(slow("old", 0.05), applied.append))
        await asyncio.sleep(0)
        second = asyncio.create_task(guard.run(slow("new", 0.01), applied.append))
        with pytest.raises(Superseded):
            await first
        return await second

    assert asyncio.run(run()) == "new"
    assert applied == ["new"]


def test_latest_only_drops_superseded_errors():
    guard = LatestOnly()

    async def fails(delay):
        await asyncio.sleep(delay)
        raise NotFoundError("Quiz not found")

    async def slow(value, delay):
        await asyncio.sleep(delay)
        return value

    async def run():
        first = asyncio.create_task(guard.run(fails(0.05)))
        await asyncio.sleep(0)
        second = asyncio.create_task(guard.run(slow("new", 0.01)))
        with pytest.raises(Superseded):
            await first
        return await second

    assert asyncio.run(run()) == "new"

    # the current request still reports its own failure
    with pytest.raises(NotFoundError):
        asyncio.run(guard.run(fails(0)))


# -------------------------
# Quiz taking
# -------------------------

def test_multiple_choice_auto_advances_but_true_false_does_not():
    taker = QuizTaker()
    taker.start(_quiz(("multiple-choice", "true-false", "multiple-choice")))

    taker.select_option(12)
    assert taker.step == 1

    taker.select_option(21)
    assert taker.step == 1

    taker.next()
    taker.select_option(32)
    assert taker.step == 2    # last question stays put


def test_true_false_pick_toggles():
    taker = QuizTaker()
    taker.start(_quiz(("true-false",)))

    taker.select_option(11)
    assert taker.answers[1].selected_options == [11]
    taker.select_option(12)
    assert taker.answers[1].selected_options == [12]

    taker.select_option(12)
    assert 1 not in taker.answers
    assert not taker.can_submit


def test_navigation_is_bounded():
    taker = QuizTaker()
    taker.start(_quiz())

    taker.previous()
    assert taker.step == 0
    taker.next()
    taker.next()
    assert taker.step == 1


def test_submit_gate_and_first_unanswered():
    taker = QuizTaker()
    taker.start(_quiz(("multiple-choice", "short-answer", "true-false")))
    api = FakeApi()

    taker.select_option(12)
    taker.set_text_answer("   ")
    taker.next()
    taker.select_option(31)
    assert not taker.can_submit

    with pytest.raises(ValidationError):
        asyncio.run(taker.submit(api))
    assert taker.step == 1
    assert api.submitted == []

    taker.set_text_answer("Because")
    assert taker.can_submit


def test_scenario_local_score_and_server_ack():
    taker = QuizTaker()
    taker.start(_quiz())
    api = FakeApi()

    taker.select_option(12)   # Q1 = B
    taker.select_option(22)   # Q2 = False
    result = asyncio.run(taker.submit(api))

    assert [r.is_correct for r in result.results] == [True, False]
    assert (result.correct, result.total) == (1, 2)
    assert result.summary() == "1/2 (50%)"
    assert taker.phase is Phase.REVIEWING
    assert taker.step == RESULTS_STEP
    assert taker.notice == "Quiz submitted successfully!"
    assert taker.submission.score == 0
    assert taker.submission.is_graded is False


def test_short_answer_counts_as_answered_not_correct():
    taker = QuizTaker()
    taker.start(_quiz(("short-answer",)))
    taker.set_text_answer("free text")

    result = asyncio.run(taker.submit(FakeApi()))

    assert result.results[0].answered is True
    assert result.results[0].is_correct is False


def test_failed_save_keeps_local_result():
    taker = QuizTaker()
    taker.start(_quiz())
    taker.select_option(12)
    taker.select_option(21)

    result = asyncio.run(taker.submit(FakeApi(submit_error=TransportError("down"))))

    assert result.correct == 2
    assert taker.local_result is result
    assert taker.notice == SAVE_FAILED
    assert taker.submission is None


def test_rejected_save_shows_server_message():
    taker = QuizTaker()
    taker.start(_quiz())
    taker.select_option(12)
    taker.select_option(21)

    asyncio.run(taker.submit(FakeApi(submit_error=ConflictError("This quiz is not available for submission"))))

    assert taker.notice == "This quiz is not available for submission"
    assert taker.local_result.correct == 2


def test_retake_notice():
    taker = QuizTaker()
    taker.start(_quiz())
    taker.select_option(12)
    taker.select_option(21)

    asyncio.run(taker.submit(FakeApi(is_retake=True)))

    assert taker.is_retake is True
    assert taker.notice == "Quiz retaken successfully!"


def test_review_navigation():
    taker = QuizTaker()
    taker.start(_quiz(("multiple-choice", "true-false", "short-answer")))
    taker.select_option(12)
    taker.select_option(21)
    taker.next()
    taker.set_text_answer("words")
    asyncio.run(taker.submit(FakeApi()))

    taker.previous()
    assert taker.step == 2
    taker.next()
    assert taker.step == RESULTS_STEP
    taker.jump_to(0)
    assert taker.step == 0
    taker.previous()
    assert taker.step == 0

    with pytest.raises(ValidationError):
        taker.jump_to(7)
    with pytest.raises(ValidationError):
        taker.select_option(11)

    items = review_local(taker)
    assert [i.your_answer for i in items] == ["B", "True", "words"]
    assert [i.correct_answer for i in items] == ["B", "True", "Graded by your teacher"]


def test_load_errors():
    taker = QuizTaker()
    assert asyncio.run(taker.load(FakeApi(quiz=None), 1)) is False
    assert taker.load_error == "Quiz not found or no longer available."

    taker = QuizTaker()
    assert asyncio.run(taker.load(FakeApi(quiz=_quiz(())), 1)) is False
    assert taker.load_error == NO_QUESTIONS
    assert taker.phase is Phase.LOADING


# -------------------------
# Review and grading
# -------------------------

def test_review_survives_edited_quiz():
    quiz = _quiz(("multiple-choice",))
    sub = _submission(
        [
            {"question_id": 1, "selected_options": [99], "is_correct": True},   # option since removed
            {"question_id": 7, "selected_options": [71], "is_correct": False},  # question since removed
        ]
    )

    items = review_submission(quiz, sub)

    assert items[0].your_answer == ANSWER_NOT_AVAILABLE
    assert items[0].correct_answer == "B"
    assert items[1].your_answer == ANSWER_NOT_AVAILABLE
    assert items[1].question_type is None


def test_check_score_boundaries():
    assert check_score(0, 10) == 0
    assert check_score("10", 10) == 10
    for bad in (-1, 11, "eleven", None):
        with pytest.raises(ValidationError):
            check_score(bad, 10)


def test_grading_desk_validates_before_sending():
    sent = []

    class Api:
        async def get_quiz(self, quiz_id):
            return _quiz()

        async def get_quiz_submissions(self, quiz_id):
            return [_submission([], max_score=10)]

        async def grade_submission(self, submission_id, score, feedback):
            sent.append((submission_id, score, feedback))
            return _submission([], max_score=10).model_copy(
                update={"is_graded": True, "score": score, "teacher_feedback": feedback}
            )

    async def run():
        desk = GradingDesk(Api(), 1)
        await desk.load()
        assert [s.id for s in desk.needs_grading] == [5]
        graded = await desk.grade(5, 5, "Good job")
        assert graded.is_graded and graded.score == 5
        assert [s.id for s in desk.graded] == [5]
        with pytest.raises(ValidationError):
            await desk.grade(5, 11)

    asyncio.run(run())
    assert sent == [(5, 5, "Good job")]


# -------------------------
# Upload batches
# -------------------------

def test_upload_batch_partial_success():
    class Api:
        async def upload_file(self, module_id, target, filename, content, *, index=None, file_type="pdf"):
            if filename == "two.pdf":
                raise TransportError("Could not reach the server (ConnectError)")
            return UploadOut(
                module_id=module_id,
                target=target,
                index=index,
                file=ContentFileOut(
                    id=len(filename),
                    path=f"/uploads/{filename}",
                    original_name=filename,
                    file_type=file_type,
                    size=len(content),
                    uploaded_at=NOW,
                    temporary=True,
                ),
            )

    files = [("one.pdf", b"1"), ("two.pdf", b"2"), ("three.pdf", b"3")]
    result = asyncio.run(upload_batch(Api(), 1, "chapter", files, index=0))

    assert [f.original_name for f in result.uploaded] == ["one.pdf", "three.pdf"]
    assert [f.filename for f in result.failed] == ["two.pdf"]
    assert "two.pdf" in result.error_message
    assert "one.pdf" not in result.error_message
    assert result.success_message == "2 files uploaded successfully"


def test_upload_batch_size_hint():
    class Api:
        async def upload_file(self, *args, **kwargs):
            raise AssertionError("oversized file must not be sent")

    result = asyncio.run(upload_batch(Api(), 1, "syllabus", [("big.mp4", b"x" * (MAX_UPLOAD_BYTES + 1))]))

    assert result.uploaded == []
    assert result.failed[0].error == "File too large (max 50MB)"


# -------------------------
# End to end against the app
# -------------------------

def test_client_round_trip_through_app(app, enrolled, quiz_payload):
    teacher = Session(token="teacher-token", user={"role": "teacher"})
    student = Session(token="student-token", user={"role": "student"}, academic_year="2024-2025")

    async def run():
        transport = httpx.ASGITransport(app=app)
        async with ApiClient(teacher, "http://testserver/api", transport=transport) as t_api, ApiClient(
            student, "http://testserver/api", transport=transport
        ) as s_api:
            quiz = await t_api.create_quiz(enrolled, QuizIn.model_validate(quiz_payload()))

            taker = QuizTaker()
            assert await taker.load(s_api, quiz.id)
            b = next(o.id for o in taker.question.options if o.text == "B")
            taker.select_option(b)
            false = next(o.id for o in taker.question.options if o.text == "False")
            taker.select_option(false)
            result = await taker.submit(s_api)
            assert result.summary() == "1/2 (50%)"
            assert taker.notice == "Quiz submitted successfully!"

            desk = GradingDesk(t_api, quiz.id)
            await desk.load()
            graded = await desk.grade(taker.submission.id, 1, "Check question 2")
            assert graded.status == "Graded"

            mine = await s_api.get_submission(taker.submission.id)
            assert mine.score == 1
            assert mine.teacher_feedback == "Check question 2"

            retake = QuizTaker()
            await retake.load(s_api, quiz.id)
            retake.select_option(b)
            true = next(o.id for o in retake.question.options if o.text == "True")
            retake.select_option(true)
            await retake.submit(s_api)
            assert retake.is_retake is True
            assert retake.notice == "Quiz retaken successfully!"
            assert retake.submission.is_graded is False

    asyncio.run(run())
