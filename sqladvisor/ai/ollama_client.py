"""
Ollama API Client - streaming query recommendations

Supports:
- Streaming (newline-delimited JSON) and one-shot generation
- Cancellation at connect, header and line boundaries
- Model availability checking
- Error diagnostics with a "pull the model" hint
"""

import asyncio
import json
import re
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from sqladvisor.ai.cancellation import CancellationToken, guarded
from sqladvisor.ai.fragments import RecommendationFragment, StreamLine
from sqladvisor.ai.prompts import RecommendationRequest, build_prompt
from sqladvisor.core.config import Settings, get_settings
from sqladvisor.core.constants import BackendKind, MODEL_NOT_FOUND_PATTERN
from sqladvisor.core.exceptions import ConfigurationError, LLMTimeoutError
from sqladvisor.core.logger import get_logger

logger = get_logger('ai.ollama')

_MODEL_NOT_FOUND = re.compile(MODEL_NOT_FOUND_PATTERN, re.IGNORECASE)

INCOMPLETE_STREAM_WARNING = "Stream ended unexpectedly without a completion signal."


# Process-wide transport; safe for concurrent use by independent requests
_shared_client: Optional[httpx.AsyncClient] = None


def get_shared_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client (created on first use)"""
    global _shared_client
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
        )
    return _shared_client


async def close_shared_http_client() -> None:
    global _shared_client
    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None


async def _read_line(lines: AsyncIterator[str]) -> Optional[str]:
    try:
        return await lines.__anext__()
    except StopAsyncIteration:
        return None


class OllamaRecommendationClient:
    """
    Streaming recommendation client for an Ollama generation server.

    One POST to /api/generate per request. In streaming mode the body is
    read as newline-delimited JSON records and turned into fragments as
    they arrive.
    """

    kind = BackendKind.OLLAMA

    def __init__(
        self,
        host: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        stream: Optional[bool] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        ai = settings.ai
        if host is not None:
            try:
                ai = type(ai).model_validate({**ai.model_dump(), "ollama_host": host})
            except ValueError as e:
                raise ConfigurationError(f"Invalid Ollama host: {host!r}") from e

        self.host = ai.ollama_host
        self.generate_url = ai.generate_url
        self.tags_url = ai.tags_url
        self.model = model or ai.model
        self.timeout = float(timeout if timeout is not None else ai.timeout)
        self.stream_mode = ai.stream if stream is None else stream
        self.probe_timeout = ai.probe_timeout
        self.warn_on_incomplete_stream = ai.warn_on_incomplete_stream
        self._http_timeout = httpx.Timeout(self.timeout, connect=min(self.timeout, ai.connect_timeout))
        self._http_client = http_client
        self._available_models: Optional[List[str]] = None

        try:
            httpx.URL(self.generate_url)
        except httpx.InvalidURL as e:
            raise ConfigurationError(f"Invalid Ollama API URL: {self.generate_url!r}") from e

        logger.debug(f"Initialized. API URL: '{self.generate_url}', Model: '{self.model}'")

    @property
    def name(self) -> str:
        return f"Ollama ({self.model})"

    @property
    def client(self) -> httpx.AsyncClient:
        return self._http_client or get_shared_http_client()

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def probe(self) -> bool:
        """Check that the Ollama server answers"""
        try:
            response = await self.client.get(self.tags_url, timeout=self.probe_timeout)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.error(f"Ollama connection check failed: {e}")
            return False

    async def get_available_models(self) -> List[str]:
        """List model names installed on the server"""
        if self._available_models is not None:
            return self._available_models

        try:
            response = await self.client.get(self.tags_url, timeout=self.probe_timeout)
            if response.status_code == 200:
                data = response.json()
                self._available_models = [
                    m['name'] for m in data.get('models', []) if isinstance(m, dict) and 'name' in m
                ]
                logger.info(f"Available models: {self._available_models}")
                return self._available_models
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to get models: {e}")

        return []

    async def is_model_available(self, model_name: Optional[str] = None) -> bool:
        model_name = model_name or self.model
        models = await self.get_available_models()
        # Exact match or prefix match (e.g., "codellama" matches "codellama:7b")
        return any(m == model_name or m.startswith(f"{model_name}:") for m in models)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def build_payload(self, request: RecommendationRequest) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": build_prompt(request),
            "stream": self.stream_mode,
        }

    async def stream(
        self,
        request: RecommendationRequest,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[RecommendationFragment]:
        """
        Request a recommendation and yield fragments as they arrive.

        Transport and backend failures end the sequence with one terminal
        ERROR fragment. Cancellation raises RecommendationCancelledError.
        """
        payload = self.build_payload(request)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout

        async def bounded(awaitable, stage: str):
            if cancel_token is not None and cancel_token.is_cancelled:
                awaitable.close()
                cancel_token.raise_if_cancelled(stage)
            remaining = deadline - loop.time()
            if remaining <= 0:
                awaitable.close()
                raise LLMTimeoutError(self._timeout_message())
            try:
                return await guarded(asyncio.wait_for(awaitable, remaining), cancel_token, stage=stage)
            except asyncio.TimeoutError as e:
                raise LLMTimeoutError(self._timeout_message()) from e

        logger.debug(
            f"Sending POST to '{self.generate_url}' (model={self.model}, "
            f"stream={self.stream_mode}, prompt length={len(payload['prompt'])})"
        )
        http_request = self.client.build_request(
            "POST", self.generate_url, json=payload, timeout=self._http_timeout
        )

        try:
            response = await bounded(self.client.send(http_request, stream=True), "connect")
        except (LLMTimeoutError, httpx.TimeoutException):
            logger.error(f"Ollama request timed out after {self.timeout:g}s")
            yield RecommendationFragment.error(self._timeout_message())
            return
        except httpx.TransportError as e:
            logger.error(f"Ollama connection failed: {e!r}")
            diagnostic = str(e) or e.__class__.__name__
            yield RecommendationFragment.error(self._with_hint(
                f"Network Error: Could not connect to Ollama at {self.generate_url}. "
                f"Ensure the server is running and accessible. Details: {diagnostic}",
                diagnostic,
            ))
            return
        except httpx.HTTPError as e:
            logger.error(f"Error setting up stream: {e!r}")
            yield RecommendationFragment.error(self._with_hint(f"Ollama Setup Error: {e}", str(e)))
            return

        try:
            logger.debug(f"Received response headers with status code: {response.status_code}")
            if response.is_error:
                try:
                    details = await bounded(self._read_error_details(response), "read_error_body")
                except LLMTimeoutError:
                    details = "Timed out reading error body."
                message = self._with_hint(
                    f"Ollama HTTP Error: {response.status_code} {response.reason_phrase} - {details}",
                    details,
                )
                logger.error(f"HTTP request failed: {message}")
                yield RecommendationFragment.error(message)
                return

            if self.stream_mode:
                fragments = self._iter_stream(response, bounded)
            else:
                fragments = self._iter_single(response, bounded)
            async with aclosing(fragments):
                async for fragment in fragments:
                    yield fragment
        finally:
            await response.aclose()

    async def _iter_stream(self, response: httpx.Response, bounded) -> AsyncIterator[RecommendationFragment]:
        lines = response.aiter_lines()
        line_count = 0
        records = 0
        skipped = 0

        while True:
            try:
                raw = await bounded(_read_line(lines), "read_line")
            except (LLMTimeoutError, httpx.TimeoutException):
                logger.error(f"Stream timed out after {line_count} lines")
                yield RecommendationFragment.error(self._timeout_message())
                return
            except httpx.HTTPError as e:
                logger.error(f"Error reading line {line_count + 1}: {e!r}")
                yield RecommendationFragment.error(f"Stream Read Error: {str(e) or e.__class__.__name__}")
                return

            if raw is None:
                break
            line_count += 1

            line = StreamLine.parse(raw)
            if line is None:
                if raw.strip():
                    skipped += 1
                    logger.debug(f"Skipping malformed line {line_count}: '{raw[:100]}'")
                continue
            records += 1

            if line.error:
                logger.error(f"Stream reported error on line {line_count}: {line.error}")
                yield RecommendationFragment.error(
                    self._with_hint(f"Ollama Stream Error: {line.error}", line.error)
                )
                return
            if line.response_text:
                yield RecommendationFragment.text(line.response_text)
            if line.done:
                logger.debug(f"Stream complete (done=true received at line {line_count})")
                yield RecommendationFragment.done()
                return

        if records == 0 and skipped > 0:
            logger.error(f"Stream contained no valid records ({skipped} malformed lines)")
            yield RecommendationFragment.error(
                f"Ollama Response Error: no valid records in response ({skipped} malformed lines skipped)"
            )
            return

        logger.warning(f"Stream ended without 'done:true' after {line_count} lines")
        if self.warn_on_incomplete_stream:
            yield RecommendationFragment.error(INCOMPLETE_STREAM_WARNING, terminal=False)

    async def _iter_single(self, response: httpx.Response, bounded) -> AsyncIterator[RecommendationFragment]:
        try:
            body = await bounded(response.aread(), "read_body")
        except (LLMTimeoutError, httpx.TimeoutException):
            yield RecommendationFragment.error(self._timeout_message())
            return
        except httpx.HTTPError as e:
            yield RecommendationFragment.error(f"Stream Read Error: {str(e) or e.__class__.__name__}")
            return

        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"JSON parsing error: {e}")
            yield RecommendationFragment.error(f"JSON Error: Could not parse response from Ollama. Details: {e}")
            return

        line = StreamLine.from_dict(data) if isinstance(data, dict) else StreamLine()
        if line.response_text.strip():
            logger.info("Recommendation received successfully")
            yield RecommendationFragment.text(line.response_text.strip())
            yield RecommendationFragment.done()
        elif line.error:
            logger.error(f"API returned an error: {line.error}")
            yield RecommendationFragment.error(self._with_hint(f"Ollama Error: {line.error}", line.error))
        else:
            yield RecommendationFragment.error("Ollama Error: Received an empty or invalid response.")

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    @staticmethod
    async def _read_error_details(response: httpx.Response) -> str:
        """Best available diagnostic from an error response body"""
        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError as e:
            return f"Failed to read error body: {e}"

        if not body.strip():
            return response.reason_phrase or "Empty response body."

        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            return body

        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return body

    def _with_hint(self, message: str, diagnostic: Optional[str]) -> str:
        if diagnostic and _MODEL_NOT_FOUND.search(diagnostic):
            message += f"\nHint: Ensure model '{self.model}' is pulled via 'ollama pull {self.model}'."
        return message

    def _timeout_message(self) -> str:
        return f"Ollama request timed out after {self.timeout:g}s"
