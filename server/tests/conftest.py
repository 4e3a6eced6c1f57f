from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Optional, Union

import httpx
import pytest

from lumina.config import Settings
from lumina.services.veo import VeoClient


API_KEY = "AIzaSyTEST-secret-key-123456"
OPERATION_NAME = "models/veo-3.1-fast-generate-preview/operations/op123"
VIDEO_URI = "https://generativelanguage.googleapis.com/v1beta/files/vid1:download?alt=media"
VIDEO_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64

StatusStep = Union[dict[str, Any], httpx.Response, Exception]


def pending() -> dict[str, Any]:
    return {"name": OPERATION_NAME, "done": False}


def finished(uri: Optional[str] = VIDEO_URI) -> dict[str, Any]:
    samples = [{"video": {"uri": uri}}] if uri else []
    return {
        "name": OPERATION_NAME,
        "done": True,
        "response": {"generateVideoResponse": {"generatedSamples": samples}},
    }


class FakeVeoServer:
    """Scripted stand-in for the Gemini REST API, mounted through httpx.MockTransport."""

    def __init__(
        self,
        statuses: Optional[list[StatusStep]] = None,
        *,
        submit_response: Optional[httpx.Response] = None,
        download_response: Optional[httpx.Response] = None,
    ) -> None:
        self.statuses: list[StatusStep] = list(statuses or [finished()])
        self.submit_response = submit_response
        self.download_response = download_response
        self.requests: list[httpx.Request] = []

    @property
    def status_checks(self) -> int:
        return sum(1 for r in self.requests if "/operations/" in r.url.path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if self.submit_response is not None:
                return self.submit_response
            return httpx.Response(200, json=pending())
        if "/operations/" in request.url.path:
            step = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            if isinstance(step, Exception):
                raise step
            if isinstance(step, httpx.Response):
                return step
            return httpx.Response(200, json=step)
        if "/files/" in request.url.path:
            if self.download_response is not None:
                return self.download_response
            return httpx.Response(200, content=VIDEO_BYTES, headers={"content-type": "video/mp4"})
        return httpx.Response(404, json={"error": {"message": "unknown route"}})

    def client(self) -> VeoClient:
        return VeoClient(api_key=API_KEY, transport=httpx.MockTransport(self))


@pytest.fixture
def veo_server() -> Callable[..., FakeVeoServer]:
    return FakeVeoServer


@pytest.fixture
def png_bytes() -> bytes:
    # Signature plus padding is enough for type sniffing and payload tests.
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def wav_bytes() -> bytes:
    return b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 32


@pytest.fixture
def studio_config(tmp_path: Path) -> Settings:
    return Settings(
        gemini_api_key=API_KEY,
        veo_poll_interval_seconds=0.001,
        veo_max_poll_attempts=10,
        veo_job_timeout_seconds=5.0,
        veo_poll_transport_retries=0,
        asset_dir=str(tmp_path / "assets"),
        max_log_entries=100,
    )
