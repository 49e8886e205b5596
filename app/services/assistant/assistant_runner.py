"""
Assistant runner for meeting insights.
Drives the thread/message/run protocol of the assistant service and polls the
run to completion with capped exponential backoff.
"""

import asyncio
from typing import Any

from app.infrastructure.observability.logging import get_logger
from app.models.domain.assistant_domain import (
    RUN_STATUS_COMPLETED,
    TERMINAL_FAILURE_STATUSES,
    RunState,
    is_terminal_status,
)
from app.services.backend.http_client import TRANSIENT_ERRORS, BackendHTTPError, HttpClient
from app.services.infrastructure.cache_store import CacheStore
from app.services.infrastructure.polling import PollExhaustedError, RetryPolicy, Sleep, poll_until

logger = get_logger(__name__)

ASSISTANT_HEADERS = {"OpenAI-Beta": "assistants=v2"}


class AssistantRunError(Exception):
    """
    Base error for an insight run.

    `step` is the stage that failed; `state` is how the run ended.
    """

    step = RunState.VALIDATING_ASSISTANT
    state = RunState.FAILED

    def __init__(
        self,
        message: str,
        last_status: str | None = None,
        attempts: int = 0,
        api_error: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.last_status = last_status
        self.attempts = attempts
        self.api_error = api_error
        self.recoverable = recoverable


class InvalidAssistantError(AssistantRunError):
    step = RunState.VALIDATING_ASSISTANT

    def __init__(self, assistant_id: str, api_error: str | None = None):
        super().__init__(f"Invalid Assistant ID: {assistant_id}", api_error=api_error, recoverable=False)
        self.assistant_id = assistant_id


class ThreadCreationError(AssistantRunError):
    step = RunState.THREAD_CREATED


class MessagePostError(AssistantRunError):
    step = RunState.MESSAGE_POSTED


class RunStartError(AssistantRunError):
    step = RunState.RUN_STARTED


class RunFailedError(AssistantRunError):
    """The service reported a terminal failure status for the run."""

    step = RunState.POLLING


class ResponseExtractionError(AssistantRunError):
    """The run completed but no message text could be read back."""

    step = RunState.COMPLETED


class RunTimeoutError(AssistantRunError):
    step = RunState.POLLING
    state = RunState.TIMED_OUT

    def __init__(self, attempts: int, last_status: str | None):
        super().__init__(
            f"Timeout after {attempts} attempts. Last status: {last_status}",
            last_status=last_status,
            attempts=attempts,
        )


def assistant_cache_key(assistant_id: str) -> str:
    return f"assistant-valid:{assistant_id}"


def extract_message_text(payload: Any) -> str | None:
    """First content block text of the first (newest) message, if present."""
    if not isinstance(payload, dict):
        return None
    messages = payload.get("data")
    if not isinstance(messages, list) or not messages:
        return None
    content = messages[0].get("content") if isinstance(messages[0], dict) else None
    if not isinstance(content, list) or not content or not isinstance(content[0], dict):
        return None
    text = content[0].get("text")
    if isinstance(text, dict):
        value = text.get("value")
        return value if isinstance(value, str) else None
    return text if isinstance(text, str) else None


def _api_error(error: Exception) -> str:
    if isinstance(error, BackendHTTPError):
        return error.remote_message() or str(error)
    return str(error)


class AssistantRunner:
    """
    One AssistantRunner per process; each run() call is an independent request.

    Assistant validation is cached for the process lifetime, so only the first
    run for a given assistant pays the extra GET.
    """

    def __init__(
        self,
        http: HttpClient,
        cache: CacheStore,
        policy: RetryPolicy | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ):
        self._http = http
        self._cache = cache
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def validate_assistant(self, assistant_id: str) -> None:
        """
        Raises:
            InvalidAssistantError: If the assistant cannot be fetched
        """
        if not assistant_id:
            raise InvalidAssistantError(assistant_id or "")

        cache_key = assistant_cache_key(assistant_id)
        if await self._cache.get(cache_key):
            return

        try:
            assistant = await self._http.request(f"/assistants/{assistant_id}")
        except TRANSIENT_ERRORS as e:
            logger.error("Assistant validation failed", assistant_id=assistant_id, error=str(e))
            raise InvalidAssistantError(assistant_id, api_error=_api_error(e)) from e

        await self._cache.set_with_ttl(cache_key, True)
        logger.info("Assistant validated", assistant_id=assistant.get("id", assistant_id))

    async def run(self, prompt: str, assistant_id: str) -> str:
        """
        Generate a response from the assistant for one prompt.

        Args:
            prompt: User message posted onto a fresh thread
            assistant_id: Assistant that executes the run

        Returns:
            str: Text of the assistant's reply

        Raises:
            AssistantRunError: Subclass naming the failed step; timeouts raise
                RunTimeoutError with attempt count and last status
        """
        await self.validate_assistant(assistant_id)

        try:
            thread = await self._http.request("/threads", "POST", payload={})
            thread_id = thread["id"]
        except (*TRANSIENT_ERRORS, KeyError, TypeError) as e:
            logger.error("Thread creation failed", error=str(e))
            raise ThreadCreationError(
                "Failed to create conversation thread", api_error=_api_error(e)
            ) from e
        logger.info("Thread created", thread_id=thread_id)

        try:
            await self._http.request(
                f"/threads/{thread_id}/messages",
                "POST",
                payload={"role": "user", "content": prompt},
            )
        except TRANSIENT_ERRORS as e:
            logger.error("Message addition failed", thread_id=thread_id, error=str(e))
            raise MessagePostError("Failed to add message to thread", api_error=_api_error(e)) from e
        logger.info("Message added", thread_id=thread_id, prompt_length=len(prompt))

        try:
            run = await self._http.request(
                f"/threads/{thread_id}/runs",
                "POST",
                payload={"assistant_id": assistant_id},
            )
            run_id = run["id"]
        except (*TRANSIENT_ERRORS, KeyError, TypeError) as e:
            logger.error("Run creation failed", thread_id=thread_id, error=str(e))
            raise RunStartError("Failed to start assistant", api_error=_api_error(e)) from e
        logger.info("Run created", thread_id=thread_id, run_id=run_id)

        status_data = await self._poll_run(thread_id, run_id)
        return await self._read_reply(thread_id, status_data)

    async def _poll_run(self, thread_id: str, run_id: str) -> dict[str, Any]:
        attempts = 0

        async def fetch_status() -> dict[str, Any]:
            nonlocal attempts
            attempts += 1
            status_data = await self._http.request(f"/threads/{thread_id}/runs/{run_id}")
            logger.info(
                "Run status",
                run_id=run_id,
                attempt=attempts,
                status=status_data.get("status"),
            )
            return status_data

        try:
            result = await poll_until(
                fetch_status,
                lambda data: is_terminal_status(data.get("status")),
                self.policy,
                sleep=self._sleep,
                retry_on=TRANSIENT_ERRORS,
                label="Run status",
            )
        except PollExhaustedError as e:
            last_status = e.last_value.get("status") if isinstance(e.last_value, dict) else None
            logger.error(
                "Run polling timed out",
                run_id=run_id,
                attempts=e.attempts,
                last_status=last_status,
                last_error=str(e.last_error) if e.last_error else None,
            )
            raise RunTimeoutError(e.attempts, last_status) from e

        status_data = result.value
        status = status_data.get("status")
        if status in TERMINAL_FAILURE_STATUSES:
            last_error = status_data.get("last_error") or {}
            message = last_error.get("message") or f"Run {status} without specific error"
            logger.error("Run failed", run_id=run_id, status=status, error=message)
            raise RunFailedError(
                message, last_status=status, attempts=result.attempts, api_error=last_error.get("code")
            )

        status_data["_attempts"] = result.attempts
        return status_data

    async def _read_reply(self, thread_id: str, status_data: dict[str, Any]) -> str:
        attempts = status_data.get("_attempts", 0)
        try:
            messages = await self._http.request(f"/threads/{thread_id}/messages")
        except TRANSIENT_ERRORS as e:
            logger.error("Message retrieval failed", thread_id=thread_id, error=str(e))
            raise ResponseExtractionError(
                "Failed to retrieve assistant response",
                last_status=RUN_STATUS_COMPLETED,
                attempts=attempts,
                api_error=_api_error(e),
            ) from e

        text = extract_message_text(messages)
        if text is None:
            logger.error("Invalid message format received", thread_id=thread_id)
            raise ResponseExtractionError(
                "Invalid message format received",
                last_status=RUN_STATUS_COMPLETED,
                attempts=attempts,
            )

        logger.info("Assistant reply received", thread_id=thread_id, attempts=attempts, length=len(text))
        return text
