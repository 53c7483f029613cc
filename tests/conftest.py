import json
import os
import tempfile
from typing import Any, Callable, Optional, Union

# Must be set before the application modules read their settings
_DB_FILE = os.path.join(tempfile.mkdtemp(prefix="takehome-tests-"), "test.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_FILE}"
os.environ["ELEVENLABS_WEBHOOK_SECRET"] = "whsec_test_secret_value"
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-that-is-long-enough-000")
os.environ.pop("REDIS_URL", None)

import httpx  # noqa: E402
import pytest  # noqa: E402

from takehome.auth import issue_account_token  # noqa: E402
from takehome.core.error_handling import UpstreamFailureError  # noqa: E402
from takehome.core.metrics import collector  # noqa: E402
from takehome.db.base import Base  # noqa: E402
from takehome.db.models import assessment as _assessment, interview as _interview, submission as _submission  # noqa: E402,F401
from takehome.db.models.assessment import Assessment  # noqa: E402
from takehome.db.models.submission import Submission  # noqa: E402
from takehome.db.session import async_session_factory, engine  # noqa: E402
from takehome.main import app  # noqa: E402
from takehome.services.ephemeral_store import store  # noqa: E402
from takehome.services.llm_client import get_text_generator  # noqa: E402
from takehome.services.tokens import mint_token  # noqa: E402

EMPLOYER_ID = 1


class FakeGenerator:
    """Stands in for the LLM provider. Replies are served in order; the last one repeats."""

    def __init__(self, *replies: Union[str, Exception, Callable[[str], str]]) -> None:
        self.replies = list(replies) or [questions_json(2)]
        self.calls: list[dict[str, Any]] = []

    async def generate(self, prompt: str, schema: Optional[dict] = None, system_message: Optional[str] = None) -> str:
        self.calls.append({"prompt": prompt, "schema": schema, "system_message": system_message})
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(prompt)
        return reply


def questions_json(count: int) -> str:
    return json.dumps(
        {
            "questions": [
                {"prompt": f"Question {i + 1}: walk me through your design.", "anchors": [{"path": "src/app.py", "startLine": 1}]}
                for i in range(count)
            ]
        }
    )


def upstream_failure() -> UpstreamFailureError:
    return UpstreamFailureError("openai", "AI provider call failed: ReadTimeout")


@pytest.fixture(autouse=True)
async def db_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    store._mem.clear()
    collector.reset()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def session():
    async with async_session_factory() as s:
        yield s


@pytest.fixture
def generator() -> FakeGenerator:
    gen = FakeGenerator(questions_json(2))
    app.dependency_overrides[get_text_generator] = lambda: gen
    return gen


@pytest.fixture
async def client(generator):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def employer_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_account_token(EMPLOYER_ID)}"}


@pytest.fixture
def make_assessment(session):
    async def _make(**overrides: Any) -> Assessment:
        values = {
            "account_id": EMPLOYER_ID,
            "title": "Rate limiter",
            "description": "Implement a token-bucket rate limiter with tests.",
            "time_limit_minutes": 60,
            "num_interview_questions": 2,
        }
        values.update(overrides)
        assessment = Assessment(**values)
        session.add(assessment)
        await session.commit()
        return assessment

    return _make


@pytest.fixture
def make_submission(session, make_assessment):
    async def _make(assessment: Optional[Assessment] = None, **overrides: Any) -> Submission:
        assessment = assessment or await make_assessment()
        values = {
            "token": mint_token(),
            "assessment_id": assessment.id,
            "candidate_name": "Ada Lovelace",
            "status": "pending",
            "time_limit_minutes": assessment.time_limit_minutes,
            "question_count": assessment.num_interview_questions,
        }
        values.update(overrides)
        submission = Submission(**values)
        session.add(submission)
        await session.commit()
        return submission

    return _make
