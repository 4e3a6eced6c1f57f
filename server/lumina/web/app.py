from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

from lumina.config import configure_logging, settings
from lumina.errors import GenerationInProgressError, ValidationError
from lumina.services.studio import StudioSession
from lumina.web.models import (
  ConsentUpdate,
  GenerateStart,
  LogEntryOut,
  MediaUpload,
  MediaUploadResponse,
  SettingsUpdate,
  StatusResponse,
)


logger = logging.getLogger(__name__)


def create_app(session: Optional[StudioSession] = None) -> FastAPI:
  configure_logging()
  studio = session or StudioSession()

  @asynccontextmanager
  async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await studio.aclose()

  app = FastAPI(title="Lumina Studio", version="0.1.0", lifespan=lifespan)
  app.state.studio = studio

  @app.get("/health")
  async def health() -> dict[str, Any]:
    return {
      "service": "lumina-studio",
      "status": "ok",
      "model": settings.veo_model,
      "api_key_configured": bool(settings.gemini_api_key),
    }

  @app.post("/media/photo", response_model=MediaUploadResponse)
  async def upload_photo(req: MediaUpload) -> MediaUploadResponse:
    try:
      asset = studio.load_photo(data_url=req.data_url, filename=req.filename)
    except ValidationError as exc:
      raise HTTPException(status_code=400, detail=str(exc))
    return MediaUploadResponse(kind="image", media_type=asset.media_type, size_bytes=asset.size_bytes)

  @app.post("/media/audio", response_model=MediaUploadResponse)
  async def upload_audio(req: MediaUpload) -> MediaUploadResponse:
    try:
      asset = studio.load_audio(data_url=req.data_url, filename=req.filename)
    except ValidationError as exc:
      raise HTTPException(status_code=400, detail=str(exc))
    return MediaUploadResponse(kind="audio", media_type=asset.media_type, size_bytes=asset.size_bytes)

  @app.put("/settings")
  async def update_settings(req: SettingsUpdate) -> dict[str, str]:
    changes = req.model_dump(exclude_none=True)
    try:
      options = studio.update_settings(**changes)
    except ValidationError as exc:
      raise HTTPException(status_code=400, detail=str(exc))
    return options.model_dump()

  @app.put("/consent")
  async def update_consent(req: ConsentUpdate) -> dict[str, bool]:
    studio.set_consent(req.granted)
    return {"granted": studio.consent}

  @app.post("/generate", status_code=202)
  async def generate(req: Optional[GenerateStart] = None) -> dict[str, str]:
    description = req.prompt_description if req is not None else None
    try:
      studio.start(description)
      logger.info("Generation started for model %s", settings.veo_model)
    except GenerationInProgressError as exc:
      raise HTTPException(status_code=409, detail=str(exc))
    except ValidationError as exc:
      raise HTTPException(status_code=400, detail=str(exc))
    return {"status": studio.status.status.value}

  @app.get("/status", response_model=StatusResponse)
  async def status() -> StatusResponse:
    return StatusResponse(
      status=studio.status.status.value,
      error=studio.last_error,
      operation=studio.operation_name,
      has_photo=studio.photo is not None,
      has_audio=studio.audio is not None,
      consent=studio.consent,
      settings=studio.options.model_dump(),
      video_ready=studio.result is not None,
      logs=[
        LogEntryOut(timestamp=e.timestamp, message=e.message, critical=e.critical)
        for e in studio.log.entries()
      ],
    )

  @app.get("/video")
  async def video() -> FileResponse:
    result = studio.result
    if result is None or result.released:
      raise HTTPException(status_code=404, detail="No rendered video available")
    return FileResponse(result.path, media_type=result.media_type, filename="lumina-studio.mp4")

  @app.post("/cancel")
  async def cancel() -> dict[str, Any]:
    cancelled = await studio.cancel()
    return {"cancelled": cancelled, "status": studio.status.status.value}

  @app.post("/reset")
  async def reset() -> dict[str, str]:
    try:
      studio.reset()
    except GenerationInProgressError as exc:
      raise HTTPException(status_code=409, detail=str(exc))
    return {"status": studio.status.status.value}

  return app
