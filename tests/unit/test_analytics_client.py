"""
Unit tests for the analytics HTTP client.
"""

import httpx
import pytest
import pytest_asyncio
from httpx import Request, Response

from xp_engine.core.errors import AnalyticsDispatchError
from xp_engine.integrations.analytics import AnalyticsClient
from xp_engine.ports import ActivityCompletedEvent, ActivityContext, TimeSpentEvent


@pytest.fixture
def context():
    return ActivityContext(user_id="user-1", resource_id="quiz-1", course_id="course-1", activity_type="Quiz")


@pytest.fixture
def completed_event(context):
    return ActivityCompletedEvent(context=context, xp_earned=125, total_questions=4, correct_questions=4)


@pytest_asyncio.fixture
async def client():
    """Analytics client without backoff delays."""
    client = AnalyticsClient(
        api_url="http://localhost:8095/",
        api_key="secret",
        timeout_ms=5000,
        retry_attempts=3,
        backoff_base_seconds=0,
    )
    yield client
    await client.close()


class TestAnalyticsClient:
    @pytest.mark.asyncio
    async def test_posts_activity_completed(self, client, completed_event, monkeypatch):
        calls = []

        async def mock_post(url, json):
            calls.append((url, json))
            return Response(202, json={"ok": True}, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        await client.send_activity_completed_event(completed_event)

        url, payload = calls[0]
        assert url == "http://localhost:8095/events/activity-completed"
        assert payload["type"] == "ActivityCompleted"
        assert payload["generated"]["xp_earned"] == 125
        assert payload["context"]["resource_id"] == "quiz-1"
        assert client.client.headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_posts_time_spent(self, client, context, monkeypatch):
        calls = []

        async def mock_post(url, json):
            calls.append((url, json))
            return Response(200, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        await client.send_time_spent_event(TimeSpentEvent(context=context, active_seconds=75))

        assert calls[0][0].endswith("/events/time-spent")
        assert calls[0][1]["generated"] == {"active_seconds": 75}

    @pytest.mark.asyncio
    async def test_retries_server_errors(self, client, completed_event, monkeypatch):
        statuses = iter([503, 500, 200])
        attempts = []

        async def mock_post(url, json):
            attempts.append(url)
            return Response(next(statuses), request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        await client.send_activity_completed_event(completed_event)
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, client, completed_event, monkeypatch):
        attempts = []

        async def mock_post(url, json):
            attempts.append(url)
            return Response(422, json={"error": "bad payload"}, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(AnalyticsDispatchError):
            await client.send_activity_completed_event(completed_event)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self, client, completed_event, monkeypatch):
        attempts = []

        async def mock_post(url, json):
            attempts.append(url)
            raise httpx.ConnectTimeout("timed out")

        monkeypatch.setattr(client.client, "post", mock_post)

        with pytest.raises(AnalyticsDispatchError) as exc:
            await client.send_activity_completed_event(completed_event)
        assert len(attempts) == 3
        assert isinstance(exc.value.__cause__, httpx.TimeoutException)

    @pytest.mark.asyncio
    async def test_connection_errors_retried(self, client, completed_event, monkeypatch):
        outcomes = iter([httpx.ConnectError("refused"), None])

        async def mock_post(url, json):
            error = next(outcomes)
            if error:
                raise error
            return Response(200, request=Request("POST", url))

        monkeypatch.setattr(client.client, "post", mock_post)

        await client.send_activity_completed_event(completed_event)
