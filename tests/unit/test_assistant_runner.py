import pytest

from app.models.domain.assistant_domain import RunState
from app.services.assistant.assistant_runner import (
    ASSISTANT_HEADERS,
    AssistantRunner,
    InvalidAssistantError,
    MessagePostError,
    RunStartError,
    ResponseExtractionError,
    RunFailedError,
    RunTimeoutError,
    ThreadCreationError,
    extract_message_text,
)
from app.services.backend.http_client import HttpClient
from app.services.infrastructure.polling import RetryPolicy

ASSISTANT_URL = "http://assistant.test/v1"
RUN_PATH = "/threads/thread_1/runs/run_1"
REPLY = {"data": [{"role": "assistant", "content": [{"type": "text", "text": {"value": "Prepare the Q3 numbers."}}]}]}


def make_runner(memory_cache, fake_sleep, policy=None):
    http = HttpClient(ASSISTANT_URL, bearer_token="sk-test", default_headers=ASSISTANT_HEADERS)
    return AssistantRunner(http, memory_cache, policy, sleep=fake_sleep)


def happy_path(api, statuses):
    api.on("GET", "/assistants/asst_123", json_body={"id": "asst_123", "object": "assistant"})
    api.on("POST", "/threads", json_body={"id": "thread_1"})
    api.on("POST", "/threads/thread_1/messages", json_body={"id": "msg_1"})
    api.on("POST", "/threads/thread_1/runs", json_body={"id": "run_1", "status": "queued"})
    api.sequence("GET", RUN_PATH, [(200, status) for status in statuses])
    api.on("GET", "/threads/thread_1/messages", json_body=REPLY)


@pytest.mark.asyncio
async def test_run_returns_reply_after_three_polls(assistant_api, memory_cache, fake_sleep):
    happy_path(
        assistant_api,
        [{"status": "queued"}, {"status": "in_progress"}, {"status": "completed"}],
    )
    runner = make_runner(memory_cache, fake_sleep)

    text = await runner.run("Meeting Details: ...", "asst_123")

    assert text == "Prepare the Q3 numbers."
    assert assistant_api.count("GET", RUN_PATH) == 3
    assert assistant_api.calls[:4] == [
        ("GET", "/assistants/asst_123"),
        ("POST", "/threads"),
        ("POST", "/threads/thread_1/messages"),
        ("POST", "/threads/thread_1/runs"),
    ]
    assert assistant_api.bodies[2] == {"role": "user", "content": "Meeting Details: ..."}
    assert assistant_api.bodies[3] == {"assistant_id": "asst_123"}
    assert all(h["OpenAI-Beta"] == "assistants=v2" for h in assistant_api.headers)


@pytest.mark.asyncio
async def test_failed_run_surfaces_service_error(assistant_api, memory_cache, fake_sleep):
    happy_path(
        assistant_api,
        [{"status": "failed", "last_error": {"code": "rate_limit_exceeded", "message": "rate_limited"}}],
    )
    runner = make_runner(memory_cache, fake_sleep)

    with pytest.raises(RunFailedError) as exc:
        await runner.run("prompt", "asst_123")

    assert "rate_limited" in str(exc.value)
    assert exc.value.last_status == "failed"
    assert exc.value.state is RunState.FAILED
    assert exc.value.step is RunState.POLLING
    assert assistant_api.count("GET", "/threads/thread_1/messages") == 0


@pytest.mark.asyncio
async def test_cancelled_run_counts_as_failure(assistant_api, memory_cache, fake_sleep):
    happy_path(assistant_api, [{"status": "cancelled"}])
    runner = make_runner(memory_cache, fake_sleep)

    with pytest.raises(RunFailedError) as exc:
        await runner.run("prompt", "asst_123")

    assert "cancelled" in str(exc.value)


@pytest.mark.asyncio
async def test_run_times_out_after_max_attempts(assistant_api, memory_cache, fake_sleep):
    happy_path(assistant_api, [{"status": "in_progress"}])
    runner = make_runner(memory_cache, fake_sleep)

    with pytest.raises(RunTimeoutError) as exc:
        await runner.run("prompt", "asst_123")

    assert exc.value.attempts == 7
    assert exc.value.last_status == "in_progress"
    assert exc.value.state is RunState.TIMED_OUT
    assert exc.value.step is RunState.POLLING
    assert str(exc.value) == "Timeout after 7 attempts. Last status: in_progress"
    assert assistant_api.count("GET", RUN_PATH) == 7
    assert fake_sleep.delays == RetryPolicy().delays()


@pytest.mark.asyncio
async def test_transient_status_error_consumes_an_attempt(assistant_api, memory_cache, fake_sleep):
    happy_path(assistant_api, [])
    assistant_api.sequence(
        "GET", RUN_PATH, [(503, {"error": {"message": "overloaded"}}), (200, {"status": "completed"})]
    )
    runner = make_runner(memory_cache, fake_sleep)

    assert await runner.run("prompt", "asst_123") == "Prepare the Q3 numbers."
    assert assistant_api.count("GET", RUN_PATH) == 2


@pytest.mark.asyncio
async def test_assistant_validation_is_cached(assistant_api, memory_cache, fake_sleep):
    happy_path(assistant_api, [{"status": "completed"}])
    runner = make_runner(memory_cache, fake_sleep)

    await runner.run("first", "asst_123")
    await runner.run("second", "asst_123")

    assert assistant_api.count("GET", "/assistants/asst_123") == 1


@pytest.mark.asyncio
async def test_invalid_assistant_is_rejected(assistant_api, memory_cache, fake_sleep):
    assistant_api.on("GET", "/assistants/asst_bad", status=404, json_body={"error": {"message": "No assistant found"}})
    runner = make_runner(memory_cache, fake_sleep)

    with pytest.raises(InvalidAssistantError) as exc:
        await runner.run("prompt", "asst_bad")

    assert str(exc.value) == "Invalid Assistant ID: asst_bad"
    assert exc.value.api_error == "No assistant found"
    assert exc.value.recoverable is False
    assert exc.value.step is RunState.VALIDATING_ASSISTANT
    assert assistant_api.count("POST", "/threads") == 0


@pytest.mark.asyncio
async def test_thread_creation_failure(assistant_api, memory_cache, fake_sleep):
    assistant_api.on("GET", "/assistants/asst_123", json_body={"id": "asst_123"})
    assistant_api.on("POST", "/threads", status=500, json_body={"error": {"message": "server error"}})
    runner = make_runner(memory_cache, fake_sleep)

    with pytest.raises(ThreadCreationError) as exc:
        await runner.run("prompt", "asst_123")

    assert exc.value.api_error == "server error"
    assert exc.value.step is RunState.THREAD_CREATED
    assert exc.value.recoverable is True


@pytest.mark.asyncio
async def test_message_post_failure(assistant_api, memory_cache, fake_sleep):
    assistant_api.on("GET", "/assistants/asst_123", json_body={"id": "asst_123"})
    assistant_api.on("POST", "/threads", json_body={"id": "thread_1"})
    assistant_api.on("POST", "/threads/thread_1/messages", status=400, json_body={"error": {"message": "too long"}})
    runner = make_runner(memory_cache, fake_sleep)

    with pytest.raises(MessagePostError) as exc:
        await runner.run("prompt", "asst_123")

    assert exc.value.step is RunState.MESSAGE_POSTED


@pytest.mark.asyncio
async def test_run_start_failure(assistant_api, memory_cache, fake_sleep):
    assistant_api.on("GET", "/assistants/asst_123", json_body={"id": "asst_123"})
    assistant_api.on("POST", "/threads", json_body={"id": "thread_1"})
    assistant_api.on("POST", "/threads/thread_1/messages", json_body={"id": "msg_1"})
    assistant_api.on("POST", "/threads/thread_1/runs", status=429, json_body={"error": {"message": "slow down"}})
    runner = make_runner(memory_cache, fake_sleep)

    with pytest.raises(RunStartError) as exc:
        await runner.run("prompt", "asst_123")

    assert exc.value.api_error == "slow down"
    assert exc.value.step is RunState.RUN_STARTED
    assert assistant_api.count("GET", RUN_PATH) == 0


@pytest.mark.asyncio
async def test_unreadable_reply_raises_extraction_error(assistant_api, memory_cache, fake_sleep):
    happy_path(assistant_api, [{"status": "completed"}])
    assistant_api.on("GET", "/threads/thread_1/messages", json_body={"data": []})
    runner = make_runner(memory_cache, fake_sleep)

    with pytest.raises(ResponseExtractionError) as exc:
        await runner.run("prompt", "asst_123")

    assert exc.value.attempts == 1
    assert exc.value.step is RunState.COMPLETED


def test_extract_message_text_shapes():
    assert extract_message_text(REPLY) == "Prepare the Q3 numbers."
    assert extract_message_text({"data": [{"content": [{"text": "plain"}]}]}) == "plain"
    assert extract_message_text({"data": [{"content": []}]}) is None
    assert extract_message_text([]) is None
