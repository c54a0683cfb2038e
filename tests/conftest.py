"""
Pytest configuration and fixtures

This module provides shared fixtures and configuration for all tests.
"""

import os
import sys
import json
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

# Run Qt without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

# Ensure the parent directory is in the path
sys.path.insert(0, str(Path(__file__).parent.parent))


class FakeCaptureProvider:
    """Writes numbered fake PNG files instead of grabbing the screen"""

    def __init__(self, error=None, on_grab=None):
        self.error = error
        self.on_grab = on_grab
        self.paths = []
        self.visible_during_grab = []
        self.overlay = None

    def grab(self, path):
        if self.overlay is not None:
            self.visible_during_grab.append(self.overlay.isVisible())
        if self.on_grab is not None:
            self.on_grab()
        if self.error is not None:
            raise self.error
        self.paths.append(Path(path))
        Path(path).write_bytes(f"fake-png-{len(self.paths)}".encode())


class FakeInference:
    """Records submissions and answers with a fixed text"""

    def __init__(self, answer="42", error=None):
        self.answer = answer
        self.error = error
        self.calls = []

    def submit(self, images, model=None):
        self.calls.append(list(images))
        if self.error is not None:
            raise self.error
        return self.answer


def make_completion(text):
    """Minimal stand-in for an openai ChatCompletion"""
    message = SimpleNamespace(content=text)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def settings():
    from screen_solver import Settings
    return Settings(token="test-token", model="gpt-4o-mini", request_timeout=30.0)


@pytest.fixture
def write_config(tmp_path):
    """Write a config.json and return its path"""
    def _write(data):
        path = tmp_path / "config.json"
        if isinstance(data, str):
            path.write_text(data, encoding="utf-8")
        else:
            path.write_text(json.dumps(data), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def overlay(qtbot):
    from screen_solver import OverlayWindow
    window = OverlayWindow()
    qtbot.addWidget(window)
    window.show()
    return window


@pytest.fixture
def capture_provider(overlay):
    provider = FakeCaptureProvider()
    provider.overlay = overlay
    return provider


@pytest.fixture
def fake_inference():
    return FakeInference()


@pytest.fixture
def openai_client():
    client = MagicMock()
    client.chat.completions.create.return_value = make_completion("The answer is 42")
    return client


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers",
        "slow: worker-thread submissions and the real hide delay (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "dispatcher: marks hotkey dispatcher state machine tests"
    )


def pytest_collection_modifyitems(config, items):
    """Mark everything in test_dispatcher.py as a dispatcher test"""
    for item in items:
        if item.fspath.basename == "test_dispatcher.py":
            item.add_marker(pytest.mark.dispatcher)
