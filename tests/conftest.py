import pytest
from fastapi.testclient import TestClient

from quizbuilder.main import create_app
from quizbuilder.memory_store import MemoryQuizStorage
from quizbuilder.models.legacy import LegacyQuiz
from quizbuilder.plan_limits import PlanLimits
from quizbuilder.server import BuilderServer


# Common test fixtures
@pytest.fixture
def storage():
    return MemoryQuizStorage()


@pytest.fixture
def plan_limits(storage):
    return PlanLimits(storage)


@pytest.fixture
def make_quiz():
    """Build a LegacyQuiz from camelCase keyword data."""

    def _make(quiz_id="quiz-1", **data):
        return LegacyQuiz.model_validate({"id": quiz_id, **data})

    return _make


@pytest.fixture
def skincare_quiz(make_quiz):
    return make_quiz(
        title="Skincare Quiz",
        description="Find your perfect routine",
        coverImageUrl="https://x/cover.jpg",
        questions=[],
        outcomes=[],
    )


@pytest.fixture
def server(storage, plan_limits):
    # Long debounce so only explicit saves write during HTTP tests
    return BuilderServer(storage, plan_limits, debounce_seconds=3600, new_quiz_debounce_seconds=3600)


@pytest.fixture
def client(server):
    with TestClient(create_app(server)) as test_client:
        yield test_client


@pytest.fixture
def user_headers():
    return {"X-User-Id": "user-1"}
