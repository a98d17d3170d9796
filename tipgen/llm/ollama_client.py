"""
Async client for a local Ollama server.

Flow:
1. POST /api/generate with stream=false
2. Retry failed attempts with exponential backoff (1s, 2s, ...)
3. Return the complete response text plus token counts

Errors after the last attempt are raised as one of:
- OllamaAPIError: server replied with an error payload, non-2xx or malformed body
- OllamaConnectionError: no response (connect error, timeout)
- OllamaUnexpectedError: anything else
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from tipgen.config import Settings, get_settings
from tipgen.telemetry.metrics import record_llm_request, record_llm_retry

logger = logging.getLogger(__name__)

PROVIDER = "ollama"


def _token_count(value) -> int:
    """Token counter from the response body; non-numeric values count as 0."""
    if isinstance(value, bool):
        return 0
    try:
        return max(int(value), 0)
    except (TypeError, ValueError, OverflowError):
        return 0


@dataclass
class OllamaResult:
    """Result from a completed generate call."""

    model: str
    text: str
    done: bool = True
    tokens_in: int = 0  # prompt_eval_count
    tokens_out: int = 0  # eval_count
    attempts: int = 1
    retry_delay_seconds: float = 0.0
    latency_ms: int = 0
    raw: dict = field(default_factory=dict, repr=False)


class OllamaError(Exception):
    """Error from the Ollama backend."""

    status = "error"


class OllamaAPIError(OllamaError):
    """Backend answered, but with an error."""

    status = "api_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(f"Ollama API error: {message} (Status: {status_code})")
        self.message = message
        self.status_code = status_code


class OllamaConnectionError(OllamaError):
    """No response received (unreachable, refused, timed out)."""

    status = "connection_error"


class OllamaUnexpectedError(OllamaError):
    """Failure outside the request/response cycle."""

    pass


class OllamaClient:
    """Async client for the Ollama generate API."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.base_url = (settings.OLLAMA_URL or "").strip().rstrip("/")
        self.model = settings.OLLAMA_MODEL
        self.timeout = settings.OLLAMA_TIMEOUT_SECONDS
        self.health_timeout = settings.OLLAMA_HEALTH_TIMEOUT_SECONDS
        self.max_retries = max(1, settings.OLLAMA_MAX_RETRIES)
        self.retry_base_delay = settings.OLLAMA_RETRY_BASE_DELAY_SECONDS
        self.temperature = settings.OLLAMA_TEMPERATURE
        self.top_p = settings.OLLAMA_TOP_P
        self.top_k = settings.OLLAMA_TOP_K
        self.max_tokens = settings.OLLAMA_MAX_OUTPUT_TOKENS
        self.repeat_penalty = settings.OLLAMA_REPEAT_PENALTY

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        logger.info(f"Ollama client initialized - URL: {self.base_url}, Model: {self.model}")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def build_payload(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> dict:
        payload = {
            "model": model or self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self.temperature if temperature is None else temperature,
                "top_p": self.top_p,
                "top_k": self.top_k,
                "num_predict": self.max_tokens if max_tokens is None else max_tokens,
                "repeat_penalty": self.repeat_penalty,
            },
        }
        if system:
            payload["system"] = system
        return payload

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> OllamaResult:
        """
        Generate a complete response, retrying failed attempts.

        Attempt n (n < max_retries) is followed by a sleep of
        base_delay * 2^(n-1). The last attempt's error is raised unchanged.

        Raises:
            OllamaError: one of its subclasses, after all attempts failed.
        """
        payload = self.build_payload(prompt, system, model, temperature, max_tokens)
        start = time.time()
        total_delay = 0.0
        last_error: Optional[OllamaError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                result = await self._call(payload)
            except OllamaError as e:
                last_error = e
                if attempt >= self.max_retries:
                    logger.error(f"Max retries ({self.max_retries}) reached for Ollama API call: {e}")
                    break
                delay = self.retry_base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"Ollama API call failed (attempt {attempt}/{self.max_retries}): {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                record_llm_retry(PROVIDER)
                await asyncio.sleep(delay)
                total_delay += delay
                continue

            result.attempts = attempt
            result.retry_delay_seconds = total_delay
            result.latency_ms = int((time.time() - start) * 1000)
            record_llm_request(
                provider=PROVIDER,
                status="ok",
                latency_ms=result.latency_ms,
                input_tokens=result.tokens_in,
                output_tokens=result.tokens_out,
            )
            return result

        record_llm_request(
            provider=PROVIDER,
            status=last_error.status,
            latency_ms=int((time.time() - start) * 1000),
        )
        raise last_error

    async def _call(self, payload: dict) -> OllamaResult:
        """Single attempt. Every failure is converted to an OllamaError."""
        logger.debug(
            f"Calling Ollama API - Model: {payload['model']}, Prompt length: {len(payload['prompt'])}"
        )
        try:
            client = await self._get_client()
            start = time.time()
            # httpx timeouts are per phase; this bounds the whole request
            response = await asyncio.wait_for(client.post("/api/generate", json=payload), self.timeout)
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise OllamaConnectionError(f"Ollama request timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise OllamaConnectionError(
                f"Ollama API network error - service unavailable ({type(e).__name__})"
            ) from e
        except Exception as e:
            raise OllamaUnexpectedError(f"Ollama API error: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            message = data.get("error") if isinstance(data, dict) and data.get("error") else response.text[:200]
            raise OllamaAPIError(message or response.reason_phrase, response.status_code)

        if not isinstance(data, dict):
            raise OllamaAPIError("Malformed response body (not a JSON object)", response.status_code)
        if data.get("error"):
            raise OllamaAPIError(str(data["error"]), response.status_code)
        text = data.get("response")
        if not isinstance(text, str):
            raise OllamaAPIError(
                f"Malformed response body (missing 'response'). Keys: {list(data.keys())}",
                response.status_code,
            )

        done = bool(data.get("done", True))
        if not done:
            logger.warning("Ollama response marked as not done")

        duration_ms = int((time.time() - start) * 1000)
        logger.debug(
            f"Ollama API call completed in {duration_ms}ms - Tokens: {data.get('eval_count', 'unknown')}"
        )

        return OllamaResult(
            model=data.get("model") or payload["model"],
            text=text,
            done=done,
            tokens_in=_token_count(data.get("prompt_eval_count")),
            tokens_out=_token_count(data.get("eval_count")),
            raw=data,
        )

    async def health_check(self) -> bool:
        """Lightweight reachability probe. Never raises."""
        try:
            client = await self._get_client()
            response = await client.get("/api/tags", timeout=self.health_timeout)
            return response.status_code == 200
        except Exception as e:
            logger.error(f"Ollama health check failed: {e}")
            return False

    async def list_models(self) -> list[str]:
        """Names of locally available models, [] on failure."""
        try:
            client = await self._get_client()
            response = await client.get("/api/tags", timeout=self.health_timeout)
            response.raise_for_status()
            models = response.json().get("models") or []
            return [m["name"] for m in models if isinstance(m, dict) and m.get("name")]
        except Exception as e:
            logger.error(f"Failed to list Ollama models: {e}")
            return []

    async def verify_model(self, model: Optional[str] = None) -> bool:
        """Best-effort check that the model is pulled. Logs instead of raising."""
        model_to_check = model or self.model
        models = await self.list_models()
        available = model_to_check in models
        if not available:
            logger.warning(
                f"Model {model_to_check} is not available. Available models: {', '.join(models) or 'none'}"
            )
        return available
