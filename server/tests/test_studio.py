from __future__ import annotations

import asyncio
import json
from typing import Optional

import httpx
import pytest

from conftest import API_KEY, VIDEO_BYTES, finished, pending
from lumina.config import Settings
from lumina.errors import (
    AuthError,
    GenerationInProgressError,
    GenerationTimeoutError,
    MissingResultError,
    TransportError,
    ValidationError,
)
from lumina.models import GenerationSettings, build_prompt
from lumina.services.activity import AppStatus
from lumina.services.studio import AUTH_HINT_MESSAGE, StudioSession
from lumina.services.veo import Operation


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


def _ready_session(client, config: Settings, png_bytes: bytes, wav_bytes: bytes) -> StudioSession:  # noqa: ANN001
    session = StudioSession(client=client, config=config)
    session.load_photo(data=png_bytes, filename="portrait.png")
    session.load_audio(data=wav_bytes, filename="voice.wav")
    session.set_consent(True)
    return session


def _messages(session: StudioSession) -> list[str]:
    return [entry.message for entry in session.log.entries()]


def test_prompt_reflects_selected_style() -> None:
    options = GenerationSettings(
        gesture_intensity="low", facial_expressiveness="natural", background_style="cinematic"
    )

    prompt = build_prompt("The person is delivering a keynote.", options)

    assert "natural facial expressions" in prompt
    assert "low hand gestures" in prompt
    assert "cinematic setting" in prompt
    assert "Context: The person is delivering a keynote." in prompt


def test_submitted_prompt_uses_session_settings(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    server = veo_server()
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)
    session.update_settings(gesture_intensity="medium", background_style="office")

    _run(session.generate())

    prompt = json.loads(server.requests[0].content)["instances"][0]["prompt"]
    assert "medium hand gestures" in prompt
    assert "office setting" in prompt


def test_generate_logs_each_pending_poll_and_completes_once(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    server = veo_server([pending(), pending(), pending(), finished()])
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)
    transitions: list[tuple[AppStatus, AppStatus]] = []
    session.status.subscribe(lambda previous, current: transitions.append((previous, current)))

    asset = _run(session.generate())

    progress = [m for m in _messages(session) if m.startswith("Rendering in progress")]
    assert len(progress) == 3
    assert transitions == [
        (AppStatus.CONFIGURING, AppStatus.PROCESSING),
        (AppStatus.PROCESSING, AppStatus.COMPLETED),
    ]
    assert session.status.status == AppStatus.COMPLETED
    assert _messages(session)[0] == "Video generation finalized. 1080p output ready."
    assert asset.path.read_bytes() == VIDEO_BYTES
    assert session.result is asset
    asset.release()
    assert not asset.path.exists()


def test_auth_failure_during_poll_adds_billing_hint(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    server = veo_server(
        [
            pending(),
            httpx.Response(
                403,
                json={
                    "error": {
                        "code": 403,
                        "message": "The caller does not have permission",
                        "status": "PERMISSION_DENIED",
                    }
                },
            ),
        ]
    )
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)

    with pytest.raises(AuthError):
        _run(session.generate())

    assert session.status.status == AppStatus.ERROR
    critical = [entry for entry in session.log.entries() if entry.critical]
    assert critical[0].message == AUTH_HINT_MESSAGE
    assert "billing" in critical[0].message
    assert critical[1].message.startswith("System Error: ")
    assert "permission" in (session.last_error or "")


def test_operation_error_with_permission_message_is_auth_error(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    failed = {
        "name": "models/veo/operations/op123",
        "done": True,
        "error": {"code": 7, "message": "Permission denied for Veo", "status": "PERMISSION_DENIED"},
    }
    server = veo_server([failed])
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)

    with pytest.raises(AuthError):
        _run(session.generate())
    assert AUTH_HINT_MESSAGE in _messages(session)


def test_completed_operation_without_videos_is_missing_result(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    server = veo_server([pending(), finished(uri=None)])
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)

    with pytest.raises(MissingResultError):
        _run(session.generate())

    assert session.status.status == AppStatus.ERROR
    assert session.result is None
    assert "System Error: Video generation failed to return a URI." in _messages(session)
    assert AUTH_HINT_MESSAGE not in _messages(session)


def test_missing_consent_never_touches_the_network(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    server = veo_server()
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)
    session.set_consent(False)

    with pytest.raises(ValidationError):
        _run(session.generate())

    assert server.requests == []
    assert session.status.status == AppStatus.CONFIGURING
    assert session.log.entries()[0].critical is True


def test_missing_audio_is_a_local_validation_failure(
    veo_server, studio_config: Settings, png_bytes: bytes
) -> None:
    server = veo_server()
    session = StudioSession(client=server.client(), config=studio_config)
    session.load_photo(data=png_bytes)
    session.set_consent(True)

    with pytest.raises(ValidationError, match="voice recording"):
        _run(session.generate())
    assert server.requests == []


def test_stuck_operation_times_out(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    studio_config.veo_max_poll_attempts = 2
    server = veo_server([pending()])
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)

    with pytest.raises(GenerationTimeoutError):
        _run(session.generate())

    assert server.status_checks == 2
    assert session.status.status == AppStatus.ERROR


def test_new_submission_clears_log_and_releases_previous_result(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    server = veo_server([finished()])
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)

    first = _run(session.generate())
    second = _run(session.generate())

    assert first.released is True
    assert not first.path.exists()
    assert second.path.exists()
    assert _messages(session).count("Initializing Lumina Engine...") == 1
    second.release()


def test_error_messages_and_log_never_include_api_key(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    server = veo_server(
        [finished()],
        download_response=httpx.Response(
            502, json={"error": {"message": f"upstream error fetching ?alt=media&key={API_KEY}"}}
        ),
    )
    session = _ready_session(server.client(), studio_config, png_bytes, wav_bytes)

    with pytest.raises(TransportError):
        _run(session.generate())

    assert all(API_KEY not in message for message in _messages(session))
    assert API_KEY not in (session.last_error or "")


class _HangingClient:
    """Accepts the job, then never finishes it."""

    def __init__(self) -> None:
        self.submitted = 0

    async def submit(self, request) -> Operation:  # noqa: ANN001
        _ = request
        self.submitted += 1
        return Operation(name="operations/hanging")

    async def wait_for_completion(self, operation: Operation, **kwargs) -> Operation:  # noqa: ANN003
        _ = kwargs
        await asyncio.Event().wait()
        return operation

    async def download(self, uri: str) -> tuple[bytes, str]:
        raise AssertionError(f"unexpected download of {uri}")


def test_start_rejects_overlap_and_cancel_discards_operation(
    studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    client = _HangingClient()
    session = _ready_session(client, studio_config, png_bytes, wav_bytes)

    async def scenario() -> Optional[bool]:
        session.start()
        await asyncio.sleep(0.01)
        assert session.status.status == AppStatus.PROCESSING
        assert session.operation_name == "operations/hanging"
        with pytest.raises(GenerationInProgressError):
            session.start()
        return await session.cancel()

    assert _run(scenario()) is True
    assert client.submitted == 1
    assert session.status.status == AppStatus.ERROR
    assert session.operation_name is None
    assert any("cancelled" in m for m in _messages(session))


def test_cancel_before_first_step_is_logged(
    studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    client = _HangingClient()
    session = _ready_session(client, studio_config, png_bytes, wav_bytes)

    async def scenario() -> bool:
        session.start()
        return await session.cancel()

    assert _run(scenario()) is True
    assert client.submitted == 0
    assert session.status.status == AppStatus.CONFIGURING
    assert _messages(session)[0] == "Generation cancelled before it started."


def test_reset_returns_to_idle(
    veo_server, studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    session = _ready_session(veo_server().client(), studio_config, png_bytes, wav_bytes)
    asset = _run(session.generate())

    session.reset()

    assert session.status.status == AppStatus.IDLE
    assert session.result is None
    assert asset.released is True
    assert session.log.entries() == []


def test_invalid_style_value_is_rejected(studio_config: Settings) -> None:
    session = StudioSession(client=_HangingClient(), config=studio_config)

    with pytest.raises(ValidationError):
        session.update_settings(background_style="beach")
    assert session.options.background_style == "cinematic"


def test_missing_api_key_surfaces_as_auth_error(
    studio_config: Settings, png_bytes: bytes, wav_bytes: bytes
) -> None:
    studio_config.gemini_api_key = None
    session = _ready_session(None, studio_config, png_bytes, wav_bytes)

    with pytest.raises(AuthError):
        _run(session.generate())
    assert session.status.status == AppStatus.ERROR
    assert AUTH_HINT_MESSAGE in _messages(session)
