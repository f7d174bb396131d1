# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for suite",
#   "sections": [
#     {"id": "isolate-settings", "name": "isolate_settings", "anchor": "fixture-isolate-settings", "kind": "fixture"},
#     {"id": "isolate-http-client", "name": "isolate_http_client", "anchor": "fixture-isolate-http-client", "kind": "fixture"},
#     {"id": "tracker", "name": "tracker", "anchor": "fixture-tracker", "kind": "fixture"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Adds ``src`` to ``sys.path`` so the suite runs from a plain checkout, and
isolates process-wide state (cached settings, the shared HTTP client) between
tests.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, List, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from QmKit.network.client import reset_http_client  # noqa: E402
from QmKit.settings import reset_settings  # noqa: E402
from tests.fixtures.http_mocking import http_mock, scripted  # noqa: E402,F401


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch: pytest.MonkeyPatch):
    """Drop ``QMKIT_*`` variables and cached settings around every test."""
    import os

    for key in list(os.environ):
        if key.upper().startswith("QMKIT_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def isolate_http_client():
    reset_http_client()
    yield
    reset_http_client()


@pytest.fixture(autouse=True)
def restore_qmkit_logger():
    """Undo ``setup_logging`` calls made by CLI tests so caplog keeps working."""
    logger = logging.getLogger("QmKit")
    yield
    for handler in list(logger.handlers):
        if getattr(handler, "_qmkit_managed", False):
            logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


class RecordingTracker:
    """Error tracker double capturing ``(error, metadata)`` pairs."""

    def __init__(self) -> None:
        self.calls: List[Tuple[BaseException, Any]] = []

    def __call__(self, error: BaseException, metadata: Any = None) -> None:
        self.calls.append((error, metadata))


@pytest.fixture
def tracker() -> RecordingTracker:
    return RecordingTracker()
