from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from lumina.models import BackgroundStyle, FacialExpressiveness, GestureIntensity


class MediaUpload(BaseModel):
  # Browsers hand us FileReader.readAsDataURL output verbatim.
  data_url: str = Field(..., min_length=1)
  filename: Optional[str] = None


class MediaUploadResponse(BaseModel):
  kind: Literal["image", "audio"]
  media_type: str
  size_bytes: int


class SettingsUpdate(BaseModel):
  gesture_intensity: Optional[GestureIntensity] = None
  facial_expressiveness: Optional[FacialExpressiveness] = None
  background_style: Optional[BackgroundStyle] = None


class ConsentUpdate(BaseModel):
  granted: bool


class GenerateStart(BaseModel):
  prompt_description: Optional[str] = Field(None, max_length=2000)


class LogEntryOut(BaseModel):
  timestamp: str
  message: str
  critical: bool = False


class StatusResponse(BaseModel):
  status: str
  error: Optional[str] = None
  operation: Optional[str] = None
  has_photo: bool = False
  has_audio: bool = False
  consent: bool = False
  settings: dict[str, str] = Field(default_factory=dict)
  video_ready: bool = False
  logs: list[LogEntryOut] = Field(default_factory=list)
