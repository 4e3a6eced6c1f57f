from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from lumina.config import Settings, settings as default_settings
from lumina.errors import (
    AuthError,
    GenerationInProgressError,
    LuminaError,
    ValidationError,
)
from lumina.models import GenerationRequest, GenerationSettings, OutputConfig, build_prompt
from lumina.services.activity import ActivityLog, AppStatus, StatusTracker
from lumina.services.assets import LocalAsset, ResultRetriever
from lumina.services.media import MediaAsset, MediaIngestor, MediaKind
from lumina.services.veo import Operation, PollCallback, VeoClient


logger = logging.getLogger(__name__)

CONSENT_REQUIRED_MESSAGE = "Please provide explicit consent for the use of uploaded identity data."
AUTH_HINT_MESSAGE = (
    "Error: The current API key may not have billing enabled or permission to use Veo models. "
    "See https://ai.google.dev/gemini-api/docs/billing"
)


class GenerationClient(Protocol):
    """The subset of VeoClient a studio session depends on."""

    async def submit(self, request: GenerationRequest) -> Operation: ...

    async def wait_for_completion(
        self,
        operation: Operation,
        *,
        poll_interval_seconds: float,
        max_attempts: Optional[int],
        timeout_seconds: Optional[float],
        transport_retries: int,
        on_poll: Optional[PollCallback],
    ) -> Operation: ...

    async def download(self, uri: str) -> tuple[bytes, str]: ...


class StudioSession:
    """One user's studio: uploaded media, style options, consent and the current render.

    A session runs at most one generation flow at a time. Status and activity
    log are owned here and exposed to the UI through subscriptions.
    """

    def __init__(
        self,
        *,
        client: Optional[GenerationClient] = None,
        config: Optional[Settings] = None,
        status: Optional[StatusTracker] = None,
        log: Optional[ActivityLog] = None,
    ) -> None:
        self._config = config or default_settings
        self._client = client
        self._owns_client = client is None
        self.status = status or StatusTracker()
        self.log = log or ActivityLog(max_entries=self._config.max_log_entries)
        self._ingestor = MediaIngestor(
            max_image_bytes=self._config.max_image_bytes,
            max_audio_bytes=self._config.max_audio_bytes,
        )
        self._photo: Optional[MediaAsset] = None
        self._audio: Optional[MediaAsset] = None
        self._options = GenerationSettings()
        self._consent = False
        self._result: Optional[LocalAsset] = None
        self._last_error: Optional[str] = None
        self._operation: Optional[Operation] = None
        self._task: Optional[asyncio.Task[LocalAsset]] = None

    # -- inputs -----------------------------------------------------------

    @property
    def photo(self) -> Optional[MediaAsset]:
        return self._photo

    @property
    def audio(self) -> Optional[MediaAsset]:
        return self._audio

    @property
    def options(self) -> GenerationSettings:
        return self._options

    @property
    def consent(self) -> bool:
        return self._consent

    @property
    def result(self) -> Optional[LocalAsset]:
        return self._result

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def operation_name(self) -> Optional[str]:
        return self._operation.name if self._operation is not None else None

    @property
    def is_processing(self) -> bool:
        return self.status.status == AppStatus.PROCESSING

    def load_photo(
        self,
        *,
        data: Optional[bytes] = None,
        data_url: Optional[str] = None,
        path: Optional[Path] = None,
        media_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> MediaAsset:
        self._photo = self._ingest("image", data, data_url, path, media_type, filename)
        self.log.append("Photo uploaded successfully.")
        return self._photo

    def load_audio(
        self,
        *,
        data: Optional[bytes] = None,
        data_url: Optional[str] = None,
        path: Optional[Path] = None,
        media_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> MediaAsset:
        self._audio = self._ingest("audio", data, data_url, path, media_type, filename)
        self.log.append("Audio uploaded successfully.")
        return self._audio

    def _ingest(
        self,
        kind: MediaKind,
        data: Optional[bytes],
        data_url: Optional[str],
        path: Optional[Path],
        media_type: Optional[str],
        filename: Optional[str],
    ) -> MediaAsset:
        if path is not None:
            asset = self._ingestor.from_path(path, kind=kind)
        elif data_url is not None:
            asset = self._ingestor.from_data_url(data_url, kind=kind, filename=filename)
        elif data is not None:
            asset = self._ingestor.from_bytes(data, kind=kind, media_type=media_type, filename=filename)
        else:
            raise ValidationError(f"No {kind} provided")
        self._mark_configuring()
        return asset

    def update_settings(self, **changes: Any) -> GenerationSettings:
        try:
            self._options = GenerationSettings(**{**self._options.model_dump(), **changes})
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid style settings: {exc.errors()[0]['msg']}") from exc
        self._mark_configuring()
        return self._options

    def set_consent(self, granted: bool) -> None:
        self._consent = bool(granted)

    def _mark_configuring(self) -> None:
        if self.status.can_transition(AppStatus.CONFIGURING):
            self.status.transition(AppStatus.CONFIGURING)

    # -- generation -------------------------------------------------------

    def build_request(self, prompt_description: Optional[str] = None) -> GenerationRequest:
        if self._photo is None:
            raise ValidationError("A portrait photo is required")
        description = prompt_description or self._config.prompt_description
        return GenerationRequest(
            source_image=self._photo.data,
            image_media_type=self._photo.media_type,
            prompt_text=build_prompt(description, self._options),
            options=self._options,
            output=OutputConfig(
                number_of_videos=self._config.veo_number_of_videos,
                resolution=self._config.veo_resolution,
                aspect_ratio=self._config.veo_aspect_ratio,
            ),
        )

    def _check_ready(self) -> None:
        """Local guards; failing them never reaches the network or changes status."""
        if self.is_processing:
            raise GenerationInProgressError("A generation is already in progress")
        problem: Optional[str] = None
        if not self._consent:
            problem = CONSENT_REQUIRED_MESSAGE
        elif self._photo is None:
            problem = "A portrait photo is required."
        elif self._audio is None:
            problem = "A voice recording is required."
        if problem is not None:
            self.log.critical(problem)
            raise ValidationError(problem)

    def _ensure_client(self) -> GenerationClient:
        if self._client is None:
            self._client = VeoClient(
                api_key=self._config.gemini_api_key or "",
                api_base=self._config.gemini_api_base,
                model=self._config.veo_model,
                request_timeout_seconds=self._config.veo_request_timeout_seconds,
                download_timeout_seconds=self._config.veo_download_timeout_seconds,
            )
        return self._client

    async def _on_poll(self, attempt: int, operation: Operation) -> None:
        self._operation = operation
        if not operation.done:
            self.log.append(f"Rendering in progress (status check {attempt})...")

    async def generate(self, prompt_description: Optional[str] = None) -> LocalAsset:
        """Run submit -> poll -> fetch and return the rendered video.

        Errors abort the flow, move the session to ERROR and are re-raised.
        """
        self._check_ready()

        self.log.clear()
        self._release_result()
        self._last_error = None
        self.status.transition(AppStatus.PROCESSING)
        self.log.append("Initializing Lumina Engine...")

        try:
            request = self.build_request(prompt_description)
            client = self._ensure_client()
            self.log.append("Generating cinematic sequence via Gemini Veo 3.1...")
            operation = await client.submit(request)
            self._operation = operation
            self.log.append("Generation job accepted. Rendering has started.")
            max_attempts = self._config.veo_max_poll_attempts
            operation = await client.wait_for_completion(
                operation,
                poll_interval_seconds=self._config.veo_poll_interval_seconds,
                max_attempts=max_attempts if max_attempts > 0 else None,
                timeout_seconds=self._config.veo_job_timeout_seconds,
                transport_retries=self._config.veo_poll_transport_retries,
                on_poll=self._on_poll,
            )
            self.log.append("Render complete. Retrieving video...")
            asset = await ResultRetriever(client, asset_dir=self._config.asset_path).fetch_result(operation)
        except LuminaError as exc:
            self._fail(exc)
            raise
        except Exception as exc:
            self._fail(LuminaError(f"Unexpected failure: {exc}"))
            raise
        except asyncio.CancelledError:
            self._last_error = "Generation cancelled."
            self.status.transition(AppStatus.ERROR)
            self.log.critical("Generation cancelled. The pending operation was discarded.")
            raise
        finally:
            self._operation = None

        self._result = asset
        self.status.transition(AppStatus.COMPLETED)
        self.log.append("Video generation finalized. 1080p output ready.")
        return asset

    def _fail(self, exc: LuminaError) -> None:
        message = str(exc) or "An unexpected error occurred."
        logger.warning("Generation failed: %s: %s", type(exc).__name__, message)
        self._last_error = message
        self.status.transition(AppStatus.ERROR)
        self.log.critical(f"System Error: {message}")
        if isinstance(exc, AuthError):
            self.log.critical(AUTH_HINT_MESSAGE)

    def start(self, prompt_description: Optional[str] = None) -> asyncio.Task[LocalAsset]:
        """Validate synchronously, then run `generate` as a background task."""
        if self._task is not None and not self._task.done():
            raise GenerationInProgressError("A generation is already in progress")
        self._check_ready()
        self._task = asyncio.create_task(self.generate(prompt_description))
        self._task.add_done_callback(_consume_task_result)
        return self._task

    async def cancel(self) -> bool:
        """Abandon the in-flight generation; returns False when nothing was running."""
        task = self._task
        if task is None or task.done():
            return False
        started = self.is_processing
        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, LuminaError):
            # A flow that started already projected its outcome into status and log.
            pass
        if not started and not self.is_processing and task.cancelled():
            self.log.append("Generation cancelled before it started.")
        return True

    def reset(self) -> None:
        if self.is_processing:
            raise GenerationInProgressError("Cancel the running generation before resetting")
        self._release_result()
        self._last_error = None
        self.log.clear()
        self.status.reset()

    def _release_result(self) -> None:
        if self._result is not None:
            self._result.release()
            self._result = None

    async def aclose(self) -> None:
        await self.cancel()
        self._release_result()
        if self._owns_client and isinstance(self._client, VeoClient):
            await self._client.aclose()
        self._client = None


def _consume_task_result(task: asyncio.Task[LocalAsset]) -> None:
    # Failures are already projected into status and log by the session.
    if not task.cancelled():
        task.exception()
