"""Lumina Studio: portrait-to-video generation backed by Gemini Veo.

Importing the package loads `.env` files so `lumina.config` sees the
Gemini credentials and studio tuning before settings are built.
"""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


_SERVER_DIR = Path(__file__).resolve().parent.parent
_REPO_ROOT = _SERVER_DIR.parent

# Later files win only where override=True; .env.local is the developer's own.
for _env_file, _override in (
    (_REPO_ROOT / ".env", False),
    (_SERVER_DIR / ".env", False),
    (_SERVER_DIR / ".env.local", True),
):
    load_dotenv(_env_file, override=_override)
