from __future__ import annotations

import logging
import mimetypes
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from lumina.errors import AuthError, MissingResultError, OperationFailedError, is_auth_flavored
from lumina.services.veo import Operation


logger = logging.getLogger(__name__)


class AssetDownloader(Protocol):
    """Anything that can fetch a generated asset by URI (VeoClient in production)."""

    async def download(self, uri: str) -> tuple[bytes, str]:
        raise NotImplementedError


@dataclass(slots=True)
class LocalAsset:
    """A generated video written to local disk.

    The caller owns the file and must call `release()` once it is no longer
    displayed; the asset is also usable as a context manager.
    """

    path: Path
    media_type: str
    size_bytes: int
    operation_name: str
    released: bool = False

    def release(self) -> None:
        if self.released:
            return
        self.path.unlink(missing_ok=True)
        self.released = True

    def __enter__(self) -> "LocalAsset":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.release()


def raise_for_operation_error(operation: Operation) -> None:
    """Raise the matching studio error when a finished operation carries an error."""
    if operation.error is None:
        return
    message = operation.error.message
    if operation.error.status:
        message = f"{message} ({operation.error.status})"
    if is_auth_flavored(message) or operation.error.code in (401, 403):
        raise AuthError(message)
    raise OperationFailedError(message)


class ResultRetriever:
    """Turns a completed operation into a locally playable asset."""

    def __init__(self, downloader: AssetDownloader, *, asset_dir: Optional[Path] = None) -> None:
        self._downloader = downloader
        self._asset_dir = asset_dir

    async def fetch_result(self, operation: Operation) -> LocalAsset:
        if not operation.done:
            raise ValueError(f"Operation {operation.name} has not finished yet")
        raise_for_operation_error(operation)
        if not operation.asset_uris:
            raise MissingResultError("Video generation failed to return a URI.")

        data, media_type = await self._downloader.download(operation.asset_uris[0])
        if not data:
            raise MissingResultError(f"Operation {operation.name} returned an empty video")
        if not media_type.startswith("video/"):
            raise MissingResultError(
                f"Operation {operation.name} returned {media_type} instead of a video"
            )

        if self._asset_dir is not None:
            self._asset_dir.mkdir(parents=True, exist_ok=True)
        suffix = ".mp4" if media_type == "video/mp4" else (mimetypes.guess_extension(media_type) or ".mp4")
        with tempfile.NamedTemporaryFile(
            prefix="lumina-", suffix=suffix, dir=self._asset_dir, delete=False
        ) as handle:
            handle.write(data)
            path = Path(handle.name)
        logger.info("Stored %d byte result for %s at %s", len(data), operation.name, path)
        return LocalAsset(
            path=path,
            media_type=media_type,
            size_bytes=len(data),
            operation_name=operation.name,
        )
