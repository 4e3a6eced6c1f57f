from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

import httpx

from lumina.config import redact
from lumina.errors import (
    AuthError,
    GenerationTimeoutError,
    NotFoundError,
    TransportError,
    ValidationError,
    is_auth_flavored,
)
from lumina.models import GenerationRequest


logger = logging.getLogger(__name__)

PollCallback = Callable[[int, "Operation"], Union[None, Awaitable[None]]]


@dataclass(slots=True)
class OperationError:
    """Error payload attached to a finished operation."""

    message: str
    code: Optional[int] = None
    status: Optional[str] = None


@dataclass(slots=True)
class Operation:
    """Normalized representation of a long-running generation operation."""

    name: str
    done: bool = False
    asset_uris: list[str] = field(default_factory=list)
    error: Optional[OperationError] = None
    raw: Optional[dict[str, Any]] = None


def _coerce_dict(response: httpx.Response) -> dict[str, Any]:
    try:
        value = response.json()
    except ValueError as exc:
        raise TransportError(f"Veo returned invalid JSON (status {response.status_code})") from exc
    if isinstance(value, dict):
        return value
    raise TransportError(f"Expected JSON object from Veo, got {type(value)!r}")


def _extract_video_uris(response: Any) -> list[str]:
    """Collect video URIs from both the REST and SDK shaped responses."""
    if not isinstance(response, dict):
        return []
    samples: list[Any] = []
    rest_payload = response.get("generateVideoResponse")
    if isinstance(rest_payload, dict):
        samples.extend(rest_payload.get("generatedSamples") or [])
    samples.extend(response.get("generatedVideos") or [])

    uris: list[str] = []
    for sample in samples:
        if not isinstance(sample, dict):
            continue
        video = sample.get("video")
        uri = video.get("uri") if isinstance(video, dict) else None
        if isinstance(uri, str) and uri.strip():
            uris.append(uri.strip())
    return uris


def parse_operation(data: dict[str, Any], *, fallback_name: str = "") -> Operation:
    """Build an Operation from a raw operation JSON payload."""
    name = data.get("name") or fallback_name
    if not isinstance(name, str) or not name.strip():
        raise TransportError(f"Veo operation payload missing name: {sorted(data)}")

    error: Optional[OperationError] = None
    raw_error = data.get("error")
    if isinstance(raw_error, dict):
        error = OperationError(
            message=str(raw_error.get("message") or "Video generation failed"),
            code=raw_error.get("code") if isinstance(raw_error.get("code"), int) else None,
            status=raw_error.get("status"),
        )
    elif raw_error:
        error = OperationError(message=str(raw_error))

    return Operation(
        name=name.strip(),
        done=bool(data.get("done")),
        asset_uris=_extract_video_uris(data.get("response")),
        error=error,
        raw=data,
    )


def _error_message(response: httpx.Response) -> str:
    """Best-effort extraction of the API error message from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase or "HTTP error"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()
        elif isinstance(error, str) and error.strip():
            return error.strip()
    return response.reason_phrase or "HTTP error"


class VeoClient:
    """Async HTTP client for Gemini Veo long-running video generation.

    The API key is injected by the caller and only ever travels in the
    `x-goog-api-key` header or the `key` query parameter of asset downloads.
    """

    def __init__(
        self,
        *,
        api_key: str,
        api_base: str = "https://generativelanguage.googleapis.com/v1beta",
        model: str = "veo-3.1-fast-generate-preview",
        request_timeout_seconds: float = 30.0,
        download_timeout_seconds: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        normalized_key = (api_key or "").strip()
        if not normalized_key:
            raise AuthError("GEMINI_API_KEY is required")
        if not (model or "").strip():
            raise ValidationError("A Veo model identifier is required")

        self._api_key = normalized_key
        self._api_base = api_base.rstrip("/")
        self._model = model.strip()
        self._download_timeout_seconds = download_timeout_seconds
        # Keep-alive connections reduce TLS/session setup overhead between polls.
        self._http = httpx.AsyncClient(
            timeout=request_timeout_seconds,
            headers=self.headers,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            http2=True,
            transport=transport,
        )

    @property
    def headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self._api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _redact(self, text: str) -> str:
        return redact(text, self._api_key)

    def _raise_for_status(self, response: httpx.Response, *, action: str) -> None:
        """Map an HTTP failure onto the studio error taxonomy."""
        if response.is_success:
            return
        status = response.status_code
        message = self._redact(_error_message(response))
        detail = f"Veo {action} failed with status {status}: {message}"
        if status == 404:
            raise NotFoundError(detail)
        if status == 429 or status >= 500:
            raise TransportError(detail, status_code=status)
        if status in (401, 403) or is_auth_flavored(message):
            raise AuthError(detail)
        if status == 400:
            raise ValidationError(detail)
        raise TransportError(detail, status_code=status)

    async def _send(self, method: str, url: Union[str, httpx.URL], *, action: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            raise TransportError(
                f"Veo {action} request failed: {self._redact(str(exc)) or type(exc).__name__}"
            ) from None  # chained httpx errors can carry the download URL
        self._raise_for_status(response, action=action)
        return response

    async def submit(self, request: GenerationRequest) -> Operation:
        """Submit a generation request and return the pending operation."""
        request.validate()
        body = {
            "instances": [
                {
                    "prompt": request.prompt_text,
                    "image": {
                        "bytesBase64Encoded": base64.b64encode(request.source_image).decode("ascii"),
                        "mimeType": request.image_media_type,
                    },
                }
            ],
            "parameters": {
                "sampleCount": request.output.number_of_videos,
                "resolution": request.output.resolution,
                "aspectRatio": request.output.aspect_ratio,
            },
        }
        url = f"{self._api_base}/models/{self._model}:predictLongRunning"
        response = await self._send("POST", url, action="submit", json=body)
        operation = parse_operation(_coerce_dict(response))
        logger.info("Submitted Veo operation %s", operation.name)
        return operation

    async def poll(self, operation: Operation) -> Operation:
        """Fetch the latest status of an operation; finished operations are returned as-is."""
        if operation.done:
            return operation
        url = f"{self._api_base}/{operation.name.lstrip('/')}"
        response = await self._send("GET", url, action="status")
        return parse_operation(_coerce_dict(response), fallback_name=operation.name)

    async def wait_for_completion(
        self,
        operation: Operation,
        *,
        poll_interval_seconds: float = 10.0,
        max_attempts: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        transport_retries: int = 0,
        on_poll: Optional[PollCallback] = None,
    ) -> Operation:
        """Poll at a fixed interval until the operation is done.

        Raises GenerationTimeoutError once `max_attempts` polls or
        `timeout_seconds` elapse without a finished operation. The last wait
        is shortened to the deadline and at least one status check is made.
        """
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if max_attempts is not None and max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds if timeout_seconds is not None else None
        latest = operation
        attempt = 0

        while not latest.done:
            if max_attempts is not None and attempt >= max_attempts:
                raise GenerationTimeoutError(
                    f"Operation {latest.name} still running after {attempt} status checks"
                )
            delay = poll_interval_seconds
            if deadline is not None:
                remaining = deadline - loop.time()
                # At least one status check happens before giving up.
                if remaining <= 0 and attempt > 0:
                    raise GenerationTimeoutError(
                        f"Operation {latest.name} still running after {timeout_seconds:g}s"
                    )
                delay = max(0.0, min(delay, remaining))
            await asyncio.sleep(delay)
            attempt += 1
            latest = await self._poll_with_retries(latest, retries=transport_retries)
            logger.debug("Operation %s poll %d done=%s", latest.name, attempt, latest.done)
            if on_poll is not None:
                outcome = on_poll(attempt, latest)
                if asyncio.iscoroutine(outcome):
                    await outcome
        return latest

    async def _poll_with_retries(self, operation: Operation, *, retries: int) -> Operation:
        remaining = max(0, retries)
        while True:
            try:
                return await self.poll(operation)
            except TransportError as exc:
                if remaining <= 0:
                    raise
                remaining -= 1
                logger.warning("Retrying status check for %s after: %s", operation.name, exc)

    async def download(self, uri: str) -> tuple[bytes, str]:
        """Download a generated asset, returning its bytes and media type."""
        # The URI already carries `alt=media`; the key is merged alongside it.
        url = httpx.URL(uri).copy_merge_params({"key": self._api_key})
        response = await self._send(
            "GET",
            url,
            action="download",
            follow_redirects=True,
            timeout=self._download_timeout_seconds,
        )
        media_type = response.headers.get("content-type", "video/mp4").split(";")[0].strip()
        return response.content, media_type or "video/mp4"

    async def aclose(self) -> None:
        """Close persistent HTTP resources used by this client."""
        await self._http.aclose()
