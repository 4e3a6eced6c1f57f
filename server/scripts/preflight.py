"""Preflight checks for Lumina Studio configuration.

Run this before starting the studio service to catch common misconfiguration:
  uv run python scripts/preflight.py

Optional network checks:
  uv run python scripts/preflight.py --check-http
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import httpx
from dotenv import load_dotenv


VALID_RESOLUTIONS = {"720p", "1080p"}
VALID_ASPECT_RATIOS = {"16:9", "9:16"}


@dataclass
class Report:
    passed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    def ok(self, message: str) -> None:
        self.passed.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    def fail(self, message: str) -> None:
        self.failures.append(message)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


def _load_environment() -> None:
    """Load local env files in precedence order without overwriting existing vars."""
    script_dir = Path(__file__).resolve().parent
    server_dir = script_dir.parent
    repo_dir = server_dir.parent
    candidates = [
        server_dir / ".env.local",
        server_dir / ".env",
        repo_dir / ".env",
    ]
    for env_file in candidates:
        if env_file.exists():
            load_dotenv(env_file, override=False)


def _is_valid_http_url(value: str) -> bool:
    """Return True when value is an absolute HTTP(S) URL."""
    parsed = urlparse((value or "").strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def _env_int(name: str, default: int, report: Report, *, minimum: int = 1) -> int:
    """Parse int env var and emit validation failures into the report."""
    raw = os.getenv(name, str(default)).strip()
    try:
        value = int(raw)
    except ValueError:
        report.fail(f"{name} must be an integer. Got: {raw!r}")
        return default
    if value < minimum:
        report.fail(f"{name} must be >= {minimum}. Got: {value}")
    return value


def _env_float(name: str, default: float, report: Report, *, minimum: float = 0.0) -> float:
    """Parse float env var and emit validation failures into the report."""
    raw = os.getenv(name, str(default)).strip()
    try:
        value = float(raw)
    except ValueError:
        report.fail(f"{name} must be a number. Got: {raw!r}")
        return default
    if value < minimum:
        report.fail(f"{name} must be >= {minimum}. Got: {value}")
    return value


def _mask(value: str) -> str:
    """Mask secret values for safe console output."""
    trimmed = value.strip()
    if len(trimmed) < 8:
        return "***"
    return f"{trimmed[:4]}...{trimmed[-4:]}"


def _api_key() -> str:
    return (os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or "").strip()


def check_core_env(report: Report) -> None:
    """Validate the credential and API endpoint."""
    api_key = _api_key()
    if not api_key:
        report.fail("GEMINI_API_KEY (or API_KEY) is required.")
    else:
        if not api_key.startswith("AIza"):
            report.warn("GEMINI_API_KEY does not start with 'AIza'; verify key value.")
        report.ok(f"Gemini API key detected ({_mask(api_key)}).")

    api_base = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta")
    if not _is_valid_http_url(api_base):
        report.fail(f"GEMINI_API_BASE is not a valid HTTP(S) URL: {api_base!r}")
    else:
        report.ok(f"GEMINI_API_BASE={api_base}")


def check_render_settings(report: Report) -> None:
    """Validate model and output configuration sent with every request."""
    model = (os.getenv("VEO_MODEL", "veo-3.1-fast-generate-preview") or "").strip()
    if not model:
        report.fail("VEO_MODEL must not be empty.")
    elif not model.startswith("veo-"):
        report.warn(f"VEO_MODEL={model!r} does not look like a Veo model id.")
    else:
        report.ok(f"VEO_MODEL={model}")

    resolution = (os.getenv("VEO_RESOLUTION", "1080p") or "").strip()
    if resolution not in VALID_RESOLUTIONS:
        report.fail(f"VEO_RESOLUTION must be one of {sorted(VALID_RESOLUTIONS)}. Got: {resolution!r}")
    aspect_ratio = (os.getenv("VEO_ASPECT_RATIO", "16:9") or "").strip()
    if aspect_ratio not in VALID_ASPECT_RATIOS:
        report.fail(
            f"VEO_ASPECT_RATIO must be one of {sorted(VALID_ASPECT_RATIOS)}. Got: {aspect_ratio!r}"
        )
    _env_int("VEO_NUMBER_OF_VIDEOS", 1, report)
    report.ok("Render settings parsed successfully.")


def check_polling(report: Report) -> None:
    """Validate polling cadence and the bounds that stop a stuck job."""
    interval = _env_float("VEO_POLL_INTERVAL_SECONDS", 10, report, minimum=0.1)
    if interval < 5:
        report.warn("VEO_POLL_INTERVAL_SECONDS below 5s may hit API rate limits.")
    max_attempts = _env_int("VEO_MAX_POLL_ATTEMPTS", 90, report, minimum=0)
    job_timeout = _env_float("VEO_JOB_TIMEOUT_SECONDS", 900, report, minimum=1.0)
    _env_int("VEO_POLL_TRANSPORT_RETRIES", 0, report, minimum=0)
    _env_float("VEO_REQUEST_TIMEOUT_SECONDS", 30, report, minimum=1.0)
    _env_float("VEO_DOWNLOAD_TIMEOUT_SECONDS", 120, report, minimum=1.0)

    if max_attempts == 0:
        report.warn("VEO_MAX_POLL_ATTEMPTS=0 disables the attempt bound; only the job timeout applies.")
    elif max_attempts * interval > job_timeout:
        report.warn(
            "VEO_JOB_TIMEOUT_SECONDS is shorter than VEO_MAX_POLL_ATTEMPTS x VEO_POLL_INTERVAL_SECONDS; "
            "the deadline will stop polling first."
        )
    report.ok("Polling settings parsed successfully.")


def check_uploads(report: Report) -> None:
    """Validate upload guardrails and the asset directory."""
    _env_int("STUDIO_MAX_IMAGE_BYTES", 20 * 1024 * 1024, report, minimum=1024)
    _env_int("STUDIO_MAX_AUDIO_BYTES", 50 * 1024 * 1024, report, minimum=1024)
    asset_dir = (os.getenv("STUDIO_ASSET_DIR") or "").strip()
    if asset_dir:
        path = Path(asset_dir).expanduser()
        if path.exists() and not path.is_dir():
            report.fail(f"STUDIO_ASSET_DIR exists but is not a directory: {path}")
        else:
            report.ok(f"STUDIO_ASSET_DIR={path}")
    else:
        report.ok("Rendered videos will be written to the system temp directory.")


def check_secret_hygiene(report: Report) -> None:
    """Run lightweight secret safety checks for common local misconfigurations."""
    repo_dir = Path(__file__).resolve().parents[2]
    if (repo_dir / ".env").exists():
        report.warn("Root .env detected. Ensure it is local-only and gitignored.")

    redact = (os.getenv("REDACT_SECRETS_IN_LOGS", "true") or "").strip().lower()
    if redact in {"0", "false", "no", "off"}:
        report.warn("REDACT_SECRETS_IN_LOGS is disabled; download URLs in logs may expose the API key.")
    else:
        report.ok("Log redaction of API keys is enabled.")


def check_http_health(report: Report, *, timeout_seconds: float) -> None:
    """Optionally confirm the key can see the configured model."""
    api_key = _api_key()
    if not api_key:
        report.warn("Skipping HTTP check: no API key configured.")
        return
    api_base = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
    model = (os.getenv("VEO_MODEL", "veo-3.1-fast-generate-preview") or "").strip()
    url = f"{api_base}/models/{model}"
    try:
        with httpx.Client(timeout=timeout_seconds, headers={"x-goog-api-key": api_key}) as client:
            response = client.get(url)
    except httpx.HTTPError as exc:
        report.fail(f"{url} not reachable ({type(exc).__name__}).")
        return
    if response.status_code in (401, 403):
        report.fail(f"API key rejected for {model} (HTTP {response.status_code}); check billing and permissions.")
    elif response.status_code == 404:
        report.fail(f"Model {model} not found (HTTP 404).")
    elif response.status_code >= 400:
        report.fail(f"{url} responded with HTTP {response.status_code}.")
    else:
        report.ok(f"Model {model} is visible to the configured key (HTTP {response.status_code}).")


def print_report(report: Report) -> None:
    """Render a human-readable summary report to stdout."""
    for message in report.passed:
        print(f"[PASS] {message}")
    for message in report.warnings:
        print(f"[WARN] {message}")
    for message in report.failures:
        print(f"[FAIL] {message}")
    print(
        f"\nSummary: {len(report.passed)} passed, {len(report.warnings)} warnings, {len(report.failures)} failures."
    )


def parse_args() -> argparse.Namespace:
    """Parse CLI arguments for optional network checks and probe timeouts."""
    parser = argparse.ArgumentParser(description="Lumina Studio preflight checks")
    parser.add_argument(
        "--check-http",
        action="store_true",
        help="Ask the Gemini API whether the configured key can see the Veo model.",
    )
    parser.add_argument(
        "--http-timeout",
        type=float,
        default=5.0,
        help="Timeout (seconds) for preflight HTTP probes (default: 5.0).",
    )
    return parser.parse_args()


def main() -> int:
    """Run preflight suite and return process exit code."""
    args = parse_args()
    _load_environment()
    report = Report()

    check_core_env(report)
    check_render_settings(report)
    check_polling(report)
    check_uploads(report)
    check_secret_hygiene(report)
    if args.check_http:
        check_http_health(report, timeout_seconds=max(args.http_timeout, 0.1))

    print_report(report)
    return 1 if report.has_failures else 0


if __name__ == "__main__":
    sys.exit(main())
