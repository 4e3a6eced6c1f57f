from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict

from lumina.errors import ValidationError


GestureIntensity = Literal["low", "medium"]
FacialExpressiveness = Literal["natural", "expressive"]
BackgroundStyle = Literal["cinematic", "neutral", "office"]


class GenerationSettings(BaseModel):
    """Style choices the user picks before submitting."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    gesture_intensity: GestureIntensity = "low"
    facial_expressiveness: FacialExpressiveness = "natural"
    background_style: BackgroundStyle = "cinematic"


@dataclass(frozen=True, slots=True)
class OutputConfig:
    """Remote render parameters sent alongside every request."""

    number_of_videos: int = 1
    resolution: str = "1080p"
    aspect_ratio: str = "16:9"


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Everything sent to the video model for one submission."""

    source_image: bytes
    image_media_type: str
    prompt_text: str
    options: GenerationSettings
    output: OutputConfig = OutputConfig()

    def validate(self) -> None:
        if not self.source_image:
            raise ValidationError("A portrait photo is required")
        if not self.image_media_type.startswith("image/"):
            raise ValidationError(f"Source media must be an image, got {self.image_media_type!r}")
        if not self.prompt_text.strip():
            raise ValidationError("Prompt text is empty")
        if self.output.number_of_videos < 1:
            raise ValidationError("number_of_videos must be >= 1")


def build_prompt(description: str, options: GenerationSettings) -> str:
    """Render the talking-head prompt for the chosen style options."""
    lines = [
        "A cinematic, ultra-realistic 1080p close-up talking head video.",
        "Subject is the person in the provided photo.",
        "Mood: Professional and elegant.",
        f"Motion: {options.facial_expressiveness} facial expressions,",
        f"{options.gesture_intensity} hand gestures and head movement,",
        "natural blinking and gaze.",
        f"Context: {description.strip().rstrip('.')}.",
        f"Background: {options.background_style} setting with soft bokeh.",
        "The animation must look fluid and lifelike, suitable for a high-end "
        "personal brand presentation.",
    ]
    return " ".join(lines)
