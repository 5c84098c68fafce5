from __future__ import annotations

import time
from typing import Any

import httpx
from pydantic import ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_random_exponential

from facet.agents.base import AgentPayload, InvocationContext
from facet.core import metrics
from facet.core.clock import Clock, MonotonicClock
from facet.core.config import AgentClientSettings
from facet.core.exceptions import AgentExecutionError, AgentTimeout
from facet.core.logging import get_logger
from facet.orchestration.enums import ErrorKind
from facet.schemas.outcome import AgentExecutionResult

logger = get_logger(name=__name__)


class _RetryableStatus(Exception):
    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"retryable status {response.status_code}")
        self.response = response


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TimeoutException):
        return False
    return isinstance(exc, (_RetryableStatus, httpx.TransportError))


class HttpAgentClient:
    """Invoke remote agents over HTTP.

    Retries (transport errors, 5xx, 429) live here rather than in the
    engine, and never run past the caller's deadline.
    """

    RETRY_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}

    def __init__(
        self,
        settings: AgentClientSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or AgentClientSettings()
        self._clock = clock or MonotonicClock()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.base_url.rstrip("/"),
            timeout=httpx.Timeout(self._settings.timeout_seconds),
            headers=self._settings.default_headers,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def invoke(self, agent_name: str, context: InvocationContext, deadline: float) -> AgentExecutionResult:
        started = self._clock.now()
        payload = context.as_payload()
        response = await self._post_with_retries(agent_name, payload, deadline, trace_id=context.run_id)
        elapsed_ms = (self._clock.now() - started) * 1000.0
        if not response.is_success:
            metrics.increment_agent_event(agent=agent_name, event="remote_error")
            raise AgentExecutionError(
                f"agent '{agent_name}' returned HTTP {response.status_code}",
                error_kind=ErrorKind.REMOTE_ERROR.value,
                agent=agent_name,
            )
        try:
            body = response.json()
            parsed = AgentPayload.model_validate(body)
        except (ValueError, ValidationError) as exc:
            metrics.increment_agent_event(agent=agent_name, event="malformed_output")
            logger.warning("agent_malformed_output", agent=agent_name, error=str(exc))
            raise AgentExecutionError(
                f"agent '{agent_name}' returned an unreadable payload",
                error_kind=ErrorKind.MALFORMED_OUTPUT.value,
                agent=agent_name,
            ) from exc
        return parsed.to_result(agent_name=agent_name, step_id=context.step_id, execution_time_ms=elapsed_ms)

    async def _post_with_retries(
        self,
        agent_name: str,
        payload: dict[str, Any],
        deadline: float,
        *,
        trace_id: str | None,
    ) -> httpx.Response:
        path = f"/agents/{agent_name}/invoke"
        headers = {"X-Trace-Id": trace_id} if trace_id else None
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_retries + 1),
            wait=wait_random_exponential(
                multiplier=self._settings.retry_backoff_seconds,
                max=self._settings.retry_backoff_max_seconds,
            ),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    remaining = deadline - self._clock.now()
                    if remaining <= 0:
                        raise AgentTimeout(f"deadline passed before calling '{agent_name}'", agent=agent_name)
                    timeout = min(self._settings.timeout_seconds, remaining)
                    start = time.perf_counter()
                    response = await self._client.post(
                        path,
                        json=payload,
                        headers=headers,
                        timeout=httpx.Timeout(timeout),
                    )
                    metrics.observe_agent_latency(agent=agent_name, latency=time.perf_counter() - start)
                    if response.status_code in self.RETRY_STATUS_CODES:
                        logger.info(
                            "agent_retryable_status",
                            agent=agent_name,
                            status=response.status_code,
                            attempt=attempt.retry_state.attempt_number,
                        )
                        raise _RetryableStatus(response)
                    return response
        except _RetryableStatus as exc:
            return exc.response
        except httpx.TimeoutException as exc:
            metrics.increment_agent_event(agent=agent_name, event="timeout")
            raise AgentTimeout(f"agent '{agent_name}' timed out", agent=agent_name) from exc
        except httpx.HTTPError as exc:
            metrics.increment_agent_event(agent=agent_name, event="remote_error")
            raise AgentExecutionError(
                f"agent '{agent_name}' unreachable: {exc}",
                error_kind=ErrorKind.REMOTE_ERROR.value,
                agent=agent_name,
            ) from exc
        raise AgentExecutionError(  # pragma: no cover - AsyncRetrying always yields at least once
            f"agent '{agent_name}' produced no response",
            error_kind=ErrorKind.REMOTE_ERROR.value,
            agent=agent_name,
        )
