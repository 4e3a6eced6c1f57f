from __future__ import annotations

import base64
import binascii
import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional

from lumina.errors import ValidationError


MediaKind = Literal["image", "audio"]

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?);base64,(?P<data>.*)$", re.S)

# Leading byte signatures for formats browsers commonly hand us.
_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"ID3", "audio/mpeg"),
    (b"\xff\xfb", "audio/mpeg"),
    (b"fLaC", "audio/flac"),
    (b"OggS", "audio/ogg"),
)


@dataclass(frozen=True, slots=True)
class MediaAsset:
    """User-supplied media held in memory, ready to embed in a request."""

    media_type: str
    data: bytes
    filename: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.media_type.split("/", 1)[0]

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def to_data_url(self) -> str:
        return encode_data_url(self.data, self.media_type)


def sniff_media_type(data: bytes, filename: Optional[str] = None) -> Optional[str]:
    """Guess a media type from magic bytes, falling back to the file extension."""
    for signature, media_type in _SIGNATURES:
        if data.startswith(signature):
            return media_type
    if data[:4] == b"RIFF" and len(data) >= 12:
        container = data[8:12]
        if container == b"WEBP":
            return "image/webp"
        if container == b"WAVE":
            return "audio/wav"
    if data[4:8] == b"ftyp":
        brand = data[8:12]
        return "audio/mp4" if brand.startswith(b"M4A") else "video/mp4"
    if filename:
        guessed, _ = mimetypes.guess_type(filename)
        return guessed
    return None


def encode_data_url(data: bytes, media_type: str) -> str:
    """Encode bytes as a base64 data URL."""
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_url(value: str) -> MediaAsset:
    """Decode a base64 data URL into a MediaAsset."""
    match = _DATA_URL_RE.match((value or "").strip())
    if match is None:
        raise ValidationError("Expected a base64 data URL")
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"Invalid base64 payload: {exc}") from exc
    media_type = match.group("mime") or "application/octet-stream"
    return MediaAsset(media_type=media_type.lower(), data=data)


class MediaIngestor:
    """Validates user uploads and turns them into MediaAsset values."""

    def __init__(self, *, max_image_bytes: int, max_audio_bytes: int) -> None:
        self._limits = {"image": max_image_bytes, "audio": max_audio_bytes}

    def from_bytes(
        self,
        data: bytes,
        *,
        kind: MediaKind,
        media_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> MediaAsset:
        if not data:
            raise ValidationError(f"Uploaded {kind} is empty")
        resolved = (media_type or "").strip().lower()
        if resolved in ("", "application/octet-stream"):
            resolved = sniff_media_type(data, filename) or ""
        if not resolved or not resolved.startswith(f"{kind}/"):
            # Some browsers label m4a voice memos as video/mp4.
            if not (kind == "audio" and resolved == "video/mp4"):
                raise ValidationError(f"Expected an {kind} file, got {resolved or 'unknown type'}")
            resolved = "audio/mp4"
        limit = self._limits[kind]
        if len(data) > limit:
            raise ValidationError(
                f"Uploaded {kind} exceeds max size ({len(data)} > {limit} bytes)"
            )
        return MediaAsset(media_type=resolved, data=data, filename=filename)

    def from_path(self, path: Path, *, kind: MediaKind) -> MediaAsset:
        resolved = Path(path).expanduser()
        if not resolved.is_file():
            raise ValidationError(f"Media file not found: {resolved}")
        return self.from_bytes(resolved.read_bytes(), kind=kind, filename=resolved.name)

    def from_data_url(self, value: str, *, kind: MediaKind, filename: Optional[str] = None) -> MediaAsset:
        asset = parse_data_url(value)
        return self.from_bytes(asset.data, kind=kind, media_type=asset.media_type, filename=filename)
