"""
Text-completion collaborator.

The pipeline treats the completion service as opaque: a system prompt and a
user message go in, a JSON document (as text) comes out. The default client
speaks the OpenAI chat-completions protocol in JSON mode.
"""

import time
from typing import Optional, Protocol

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.errors import ConfigError, UpstreamError
from app.observability.metrics import completion_requests_total, external_api_latency_seconds

logger = structlog.get_logger(__name__)

CHAT_COMPLETIONS_ENDPOINT = "/chat/completions"


class TransientCompletionError(UpstreamError):
    """Throttled, 5xx or timed-out completion request; safe to retry."""


class CompletionService(Protocol):
    model: str

    async def complete_json(self, system_prompt: str, user_message: str, purpose: str) -> str:
        ...


class OpenAICompletionClient:
    """Chat-completions client with retry on throttling and transient failures."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = (api_key or settings.OPENAI_API_KEY or "").strip()
        if not self._api_key:
            raise ConfigError("OPENAI_API_KEY not configured")
        self.model = model or settings.COMPLETION_MODEL
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.OPENAI_BASE_URL,
            timeout=timeout or settings.COMPLETION_TIMEOUT_SECONDS,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        stop=stop_after_attempt(settings.COMPLETION_MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        retry=retry_if_exception_type(TransientCompletionError),
        reraise=True,
    )
    async def complete_json(self, system_prompt: str, user_message: str, purpose: str) -> str:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "temperature": 0,
            "response_format": {"type": "json_object"},
        }
        started = time.perf_counter()
        try:
            response = await self._client.post(CHAT_COMPLETIONS_ENDPOINT, json=body)
        except httpx.TimeoutException as e:
            completion_requests_total.labels(purpose=purpose, outcome="timeout").inc()
            raise TransientCompletionError(f"Completion timeout: {e}") from e
        except httpx.TransportError as e:
            completion_requests_total.labels(purpose=purpose, outcome="network_error").inc()
            raise TransientCompletionError(f"Completion transport error: {e}") from e
        finally:
            external_api_latency_seconds.labels(
                service="completion", operation=purpose,
            ).observe(time.perf_counter() - started)

        if response.status_code == 429 or response.status_code >= 500:
            completion_requests_total.labels(purpose=purpose, outcome="transient").inc()
            logger.warning("completion_transient_error",
                           purpose=purpose, status_code=response.status_code)
            raise TransientCompletionError(
                f"Completion service returned {response.status_code}"
            )
        if response.status_code >= 400:
            completion_requests_total.labels(purpose=purpose, outcome="error").inc()
            raise UpstreamError(
                f"Completion service returned {response.status_code}: {response.text[:300]}"
            )

        data = response.json()
        content = (data.get("choices") or [{}])[0].get("message", {}).get("content")
        if not content:
            completion_requests_total.labels(purpose=purpose, outcome="empty").inc()
            raise UpstreamError(f"Empty response from completion service ({purpose})")

        completion_requests_total.labels(purpose=purpose, outcome="ok").inc()
        usage = data.get("usage") or {}
        logger.info("completion_received", purpose=purpose, model=self.model,
                    prompt_tokens=usage.get("prompt_tokens"),
                    completion_tokens=usage.get("completion_tokens"))
        return content
