#!/usr/bin/env python3
"""
Screen Solver
A hotkey-driven overlay that captures the screen, sends one or more
screenshots to a multimodal chat model and shows the answer on top of
everything else.

Usage:
    python screen_solver.py [--config PATH]

Hotkeys:
    Ctrl+Shift+S   Screenshot and answer (finalizes multi-capture)
    Ctrl+Shift+A   Add a screenshot to multi-capture
    Ctrl+Shift+R   Reset
    Ctrl+B         Show / hide the overlay
    Ctrl+Arrows    Move the overlay
"""

import sys
import os
import json
import time
import base64
import signal
import argparse
import traceback
from pathlib import Path
from typing import Callable, Dict, List, Optional

from PyQt5.QtWidgets import QApplication, QWidget, QVBoxLayout, QLabel, QTextEdit
from PyQt5.QtCore import (
    Qt, QTimer, QThread, QEventLoop, QObject, QStandardPaths, pyqtSignal, pyqtSlot
)
from PyQt5.QtGui import QFont

from PIL import ImageGrab
from dotenv import load_dotenv
import openai
from openai import OpenAI

# Keyboard hotkey support
try:
    import keyboard
    KEYBOARD_AVAILABLE = True
except ImportError:
    KEYBOARD_AVAILABLE = False

# Windows capture exclusion goes through user32 directly
if sys.platform == 'win32':
    import ctypes
    from ctypes import wintypes
else:
    ctypes = None


class ScreenSolverError(Exception):
    """Base class for application errors"""


class ConfigError(ScreenSolverError):
    """Configuration could not be loaded or is incomplete"""


class CaptureError(ScreenSolverError):
    """The screenshot could not be taken or read back"""


class InferenceError(ScreenSolverError):
    """The model request failed or returned no answer"""


class Config:
    """Application configuration"""
    CONFIG_FILE = Path(__file__).resolve().parent / "config.json"
    TOKEN_ENV_VAR = "GITHUB_TOKEN"

    # Inference
    ENDPOINT = "https://models.inference.ai.azure.com"
    DEFAULT_MODEL = "gpt-4o-mini"
    DEFAULT_TIMEOUT = 120.0  # seconds
    MAX_TOKENS = 5000
    PROMPT = "Can you solve the question for me and give the final answer/code?"

    # Global hotkeys (keyboard module key names)
    HOTKEYS = {
        'capture_or_finalize': "ctrl+shift+s",
        'add_to_multi_capture': "ctrl+shift+a",
        'reset': "ctrl+shift+r",
        'toggle_visibility': "ctrl+b",
        'move_up': "ctrl+up",
        'move_down': "ctrl+down",
        'move_left': "ctrl+left",
        'move_right': "ctrl+right",
    }
    HOTKEY_POLL_INTERVAL_MS = 100

    # Capture
    HIDE_DELAY_MS = 200  # lets the window manager finish hiding the overlay
    SCREENSHOT_PREFIX = "screenshot_"

    # Overlay
    WINDOW_WIDTH = 800
    WINDOW_HEIGHT = 600
    MOVE_STEP = 20  # pixels
    FONT_FAMILY = "Segoe UI"
    FONT_SIZE = 11
    DEFAULT_INSTRUCTION = "Ctrl+Shift+S: Screenshot | Ctrl+Shift+A: Multi-mode"
    MULTI_INSTRUCTION = "Multi-mode: Ctrl+Shift+A to add, Ctrl+Shift+S to finalize"
    ERROR_PREFIX = "Error: "


class Settings:
    """Values loaded from config.json and the environment"""

    __slots__ = ('token', 'model', 'request_timeout')

    def __init__(self, token: str, model: str = Config.DEFAULT_MODEL,
                 request_timeout: float = Config.DEFAULT_TIMEOUT):
        self.token = token
        self.model = model
        self.request_timeout = request_timeout

    def __repr__(self):
        return f"Settings(token='***', model={self.model!r}, request_timeout={self.request_timeout!r})"


def load_settings(config_path: Optional[Path] = None, environ=None) -> Settings:
    """
    Read config.json and the token environment variable.

    Args:
        config_path: JSON settings file (defaults to config.json beside this module)
        environ: Mapping to read the token from (defaults to os.environ)

    Returns:
        Validated Settings

    Raises:
        ConfigError: if the file, the apiKey field or the token is missing
    """
    path = Path(config_path) if config_path is not None else Config.CONFIG_FILE
    if environ is None:
        environ = os.environ

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")

    if not data.get('apiKey'):
        raise ConfigError("API key is missing in config.json")

    token = environ.get(Config.TOKEN_ENV_VAR)
    if not token:
        raise ConfigError(f"{Config.TOKEN_ENV_VAR} is missing in environment")

    model = data.get('model')
    if model is None or model == "":
        model = Config.DEFAULT_MODEL
        print(f"Model not specified in config, using default: {model}")
    elif not isinstance(model, str):
        raise ConfigError("'model' must be a string")

    timeout = data.get('requestTimeout', Config.DEFAULT_TIMEOUT)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError("'requestTimeout' must be a positive number of seconds")

    return Settings(token=token, model=model, request_timeout=float(timeout))


class OverlayWindow(QWidget):
    """
    Borderless always-on-top window showing instructions and answers.
    Excluded from screen captures where the platform allows it.
    """

    def __init__(self):
        super().__init__()

        # Setup window properties for a floating overlay
        flags = Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool
        if sys.platform.startswith('linux'):
            # Unmanaged windows stay on every workspace
            flags |= Qt.X11BypassWindowManagerHint
        self.setWindowFlags(flags)
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setAttribute(Qt.WA_ShowWithoutActivating, True)
        self.resize(Config.WINDOW_WIDTH, Config.WINDOW_HEIGHT)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(10, 10, 10, 10)

        self.instruction_label = QLabel(Config.DEFAULT_INSTRUCTION)
        self.instruction_label.setFont(QFont(Config.FONT_FAMILY, Config.FONT_SIZE))
        self.instruction_label.setStyleSheet(
            "color: white; background-color: rgba(0, 0, 0, 180); padding: 6px;"
        )
        self.instruction_label.setWordWrap(True)
        layout.addWidget(self.instruction_label)

        self.result_view = QTextEdit()
        self.result_view.setReadOnly(True)
        self.result_view.setFont(QFont("Consolas", Config.FONT_SIZE))
        self.result_view.setFrameStyle(0)
        self._set_result_style(error=False)
        layout.addWidget(self.result_view, 1)

        self.capture_protected = self._apply_capture_protection()

    def _set_result_style(self, error: bool):
        color = "#ff6b6b" if error else "#e0e0e0"
        self.result_view.setStyleSheet(
            f"color: {color}; background-color: rgba(20, 20, 20, 200);"
        )

    def _apply_capture_protection(self) -> bool:
        """Exclude the window from screenshots and screen sharing (Windows only)"""
        if ctypes is None:
            return False

        WDA_MONITOR = 0x01
        WDA_EXCLUDEFROMCAPTURE = 0x11  # Windows 10 2004+

        try:
            set_display_affinity = ctypes.windll.user32.SetWindowDisplayAffinity
            set_display_affinity.restype = wintypes.BOOL
            set_display_affinity.argtypes = [wintypes.HWND, wintypes.DWORD]

            hwnd = int(self.winId())
            if set_display_affinity(hwnd, WDA_EXCLUDEFROMCAPTURE):
                return True
            if set_display_affinity(hwnd, WDA_MONITOR):
                return True
            print(f"⚠ SetWindowDisplayAffinity failed. Error code: {ctypes.GetLastError()}")
        except (AttributeError, OSError) as e:
            print(f"⚠ Screen capture protection unavailable: {e}")
        return False

    # Notifications from the dispatcher

    def update_instruction(self, text: str):
        self.instruction_label.setText(text)
        self.instruction_label.show()

    def hide_instruction(self):
        self.instruction_label.hide()

    def show_result(self, text: str):
        self._set_result_style(error=False)
        self.result_view.setPlainText(text)

    def show_error(self, message: str):
        self._set_result_style(error=True)
        self.result_view.setPlainText(f"{Config.ERROR_PREFIX}{message}")

    def clear_result(self):
        self._set_result_style(error=False)
        self.result_view.clear()

    # Window handling

    def toggle_visibility(self) -> bool:
        """Show the window if hidden, hide it if shown. Returns the new visibility."""
        if self.isVisible():
            self.hide()
        else:
            self.show()
        return self.isVisible()

    def move_by(self, dx: int, dy: int):
        """Shift the window; no clamping to the screen"""
        pos = self.pos()
        self.move(pos.x() + dx, pos.y() + dy)


class PillowScreenCapture:
    """Grabs the whole desktop with Pillow's ImageGrab"""

    def grab(self, path: Path):
        image = ImageGrab.grab(all_screens=True)
        image.save(str(path), "PNG")


def get_pictures_dir() -> Path:
    """Platform pictures folder, created if needed"""
    location = QStandardPaths.writableLocation(QStandardPaths.PicturesLocation)
    directory = Path(location) if location else Path.home()
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def screenshot_path(directory: Path, timestamp_ms: Optional[int] = None) -> Path:
    """Timestamped PNG path inside directory"""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return Path(directory) / f"{Config.SCREENSHOT_PREFIX}{timestamp_ms}.png"


def wait_ms(milliseconds: int):
    """Wait while keeping the Qt event loop running"""
    if milliseconds <= 0:
        QApplication.processEvents()
        return
    loop = QEventLoop()
    QTimer.singleShot(milliseconds, loop.quit)
    loop.exec_()


class CaptureDriver:
    """Takes one screenshot with the overlay hidden and returns it base64-encoded"""

    def __init__(self, overlay, provider=None, output_dir: Optional[Path] = None,
                 hide_delay_ms: int = Config.HIDE_DELAY_MS):
        self.overlay = overlay
        self.provider = provider if provider is not None else PillowScreenCapture()
        self.output_dir = output_dir
        self.hide_delay_ms = hide_delay_ms

    def capture_screenshot(self) -> str:
        """
        Capture the screen without the overlay in it.

        The overlay is always shown again afterwards, even if the capture fails.

        Returns:
            Base64-encoded PNG

        Raises:
            CaptureError: if the capture utility or reading the file fails
        """
        self.overlay.hide_instruction()
        try:
            self.overlay.hide()
            wait_ms(self.hide_delay_ms)

            directory = self.output_dir if self.output_dir is not None else get_pictures_dir()
            path = screenshot_path(directory)
            self.provider.grab(path)

            image_bytes = path.read_bytes()
            return base64.b64encode(image_bytes).decode('ascii')
        except Exception as e:
            self.overlay.show_error(str(e))
            raise CaptureError(str(e)) from e
        finally:
            self.overlay.show()


class InferenceClient:
    """Sends screenshots plus the fixed prompt to the chat completions endpoint"""

    def __init__(self, settings: Settings, client: Optional[OpenAI] = None):
        self.settings = settings
        if client is None:
            client = OpenAI(
                api_key=settings.token,
                base_url=Config.ENDPOINT,
                timeout=settings.request_timeout,
                max_retries=0,
            )
        self.client = client

    @staticmethod
    def build_content(images: List[str], prompt: str = Config.PROMPT) -> List[Dict]:
        """Prompt text first, then every image as a PNG data URL in capture order"""
        content = [{"type": "text", "text": prompt}]
        for image in images:
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/png;base64,{image}"},
            })
        return content

    def submit(self, images: List[str], model: Optional[str] = None) -> str:
        """
        Ask the model to solve what is on the screenshots.

        Args:
            images: Base64-encoded PNGs in capture order
            model: Model name (defaults to the configured model)

        Returns:
            The text of the first choice

        Raises:
            InferenceError: if there is nothing to send or the request fails
        """
        if not images:
            raise InferenceError("No screenshots to submit")

        model = model or self.settings.model
        print(f"Sending {len(images)} screenshot(s) to {model}...")
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": self.build_content(images)}],
                max_tokens=Config.MAX_TOKENS,
            )
        except openai.OpenAIError as e:
            raise InferenceError(str(e)) from e

        if not response.choices:
            raise InferenceError("Model returned no answer")
        return response.choices[0].message.content or ""


class SubmissionWorker(QThread):
    """Runs one submission off the UI thread"""

    succeeded = pyqtSignal(str)
    failed = pyqtSignal(str)

    def __init__(self, inference: InferenceClient, images: List[str], parent=None):
        super().__init__(parent)
        self.inference = inference
        self.images = images

    def run(self):
        try:
            text = self.inference.submit(self.images)
        except InferenceError as e:
            self.failed.emit(str(e))
            return
        except Exception as e:
            traceback.print_exc()
            self.failed.emit(f"Unexpected error: {e}")
            return
        self.succeeded.emit(text)


class Session:
    """Pending screenshots and the multi-capture flag"""

    IDLE = "idle"
    ACCUMULATING = "accumulating"

    def __init__(self):
        self._images: List[str] = []
        self.multi_capture = False

    @property
    def images(self) -> tuple:
        return tuple(self._images)

    @property
    def state(self) -> str:
        return self.ACCUMULATING if self.multi_capture else self.IDLE

    def __len__(self):
        return len(self._images)

    def add(self, image: str):
        self._images.append(image)

    def enable_multi_capture(self) -> bool:
        """Turn on multi-capture. Returns True if it was off."""
        if self.multi_capture:
            return False
        self.multi_capture = True
        return True

    def take_all(self) -> List[str]:
        """Hand over every pending image and empty the list"""
        images, self._images = self._images, []
        return images

    def reset(self):
        self._images = []
        self.multi_capture = False


class HotkeyDispatcher(QObject):
    """
    Hotkey actions and the capture/accumulate/submit/reset state machine.

    Only one capture or submission runs at a time. Presses that would touch
    the session while one is in flight are dropped.
    """

    CAPTURING = "capturing"
    SUBMITTING = "submitting"

    DIRECTIONS = {
        'up': (0, -Config.MOVE_STEP),
        'down': (0, Config.MOVE_STEP),
        'left': (-Config.MOVE_STEP, 0),
        'right': (Config.MOVE_STEP, 0),
    }

    def __init__(self, session: Session, capture: CaptureDriver, inference: InferenceClient,
                 overlay, run_async: bool = True):
        super().__init__()
        self.session = session
        self.capture = capture
        self.inference = inference
        self.overlay = overlay
        self.run_async = run_async

        self.in_flight: Optional[str] = None
        self._workers: List[SubmissionWorker] = []

    @property
    def busy(self) -> bool:
        return self.in_flight is not None

    def _ignore(self, action: str) -> bool:
        if self.in_flight is None:
            return False
        print(f"Ignoring {action}: {self.in_flight} in progress")
        return True

    def _capture_one(self) -> Optional[str]:
        """Capture while holding the in-flight guard. Returns None on failure."""
        self.in_flight = self.CAPTURING
        try:
            return self.capture.capture_screenshot()
        except CaptureError as e:
            print(f"Capture failed: {e}", file=sys.stderr)
            return None
        finally:
            self.in_flight = None

    def capture_or_finalize(self):
        """Capture one screenshot, then submit everything accumulated so far"""
        if self._ignore("capture"):
            return

        image = self._capture_one()
        if image is None:
            return

        self.session.add(image)
        images = self.session.take_all()
        self.overlay.update_instruction(f"Processing {len(images)} screenshot(s)...")
        self._start_submission(images)

    def add_to_multi_capture(self):
        """Capture one screenshot and keep it for a later finalize"""
        if self._ignore("multi-capture"):
            return

        entering = self.session.enable_multi_capture()
        if entering:
            self.overlay.update_instruction(Config.MULTI_INSTRUCTION)

        image = self._capture_one()
        if image is None:
            if entering:
                # Multi-capture needs at least one image
                self.session.reset()
                self.overlay.update_instruction(Config.DEFAULT_INSTRUCTION)
            return

        self.session.add(image)
        self.overlay.update_instruction(Config.MULTI_INSTRUCTION)

    def reset(self):
        """Drop pending screenshots and go back to idle"""
        if self.in_flight == self.CAPTURING:
            self._ignore("reset")
            return

        self.session.reset()
        self.overlay.clear_result()
        self.overlay.update_instruction(Config.DEFAULT_INSTRUCTION)

    def toggle_visibility(self):
        if self.in_flight == self.CAPTURING:
            self._ignore("toggle")
            return
        self.overlay.toggle_visibility()

    def move(self, direction: str):
        try:
            dx, dy = self.DIRECTIONS[direction]
        except KeyError:
            raise ValueError(f"Unknown direction: {direction!r}")
        self.overlay.move_by(dx, dy)

    def _start_submission(self, images: List[str]):
        self.in_flight = self.SUBMITTING

        if not self.run_async:
            try:
                text = self.inference.submit(images)
            except InferenceError as e:
                self._on_submission_failed(str(e))
            else:
                self._on_submission_succeeded(text)
            return

        worker = SubmissionWorker(self.inference, images, parent=self)
        worker.succeeded.connect(self._on_submission_succeeded)
        worker.failed.connect(self._on_submission_failed)
        worker.finished.connect(lambda: self._release_worker(worker))
        self._workers.append(worker)
        worker.start()

    def _release_worker(self, worker: SubmissionWorker):
        if worker in self._workers:
            self._workers.remove(worker)
        worker.deleteLater()

    @pyqtSlot(str)
    def _on_submission_succeeded(self, text: str):
        self.in_flight = None
        self.session.reset()
        self.overlay.update_instruction(Config.DEFAULT_INSTRUCTION)
        self.overlay.show_result(text)
        print("✓ Answer received")

    @pyqtSlot(str)
    def _on_submission_failed(self, message: str):
        # Back to idle as after a success; the consumed images are not re-queued
        self.in_flight = None
        print(f"Submission failed: {message}", file=sys.stderr)
        self.session.reset()
        self.overlay.update_instruction(Config.DEFAULT_INSTRUCTION)
        self.overlay.show_error(message)

    def wait_for_submission(self, timeout_ms: int = 30000) -> bool:
        """Block until running worker threads end (used on shutdown and in tests)"""
        finished = True
        for worker in list(self._workers):
            finished = worker.wait(timeout_ms) and finished
        return finished


class HotkeyPoller(QObject):
    """
    Global hotkeys via keyboard.is_pressed polled from a Qt timer.

    Each binding fires once per press, not repeatedly while held.
    """

    def __init__(self, bindings: Dict[str, Callable[[], None]],
                 is_pressed: Optional[Callable[[str], bool]] = None,
                 interval_ms: int = Config.HOTKEY_POLL_INTERVAL_MS):
        super().__init__()
        if is_pressed is None and KEYBOARD_AVAILABLE:
            is_pressed = keyboard.is_pressed
        self.is_pressed = is_pressed

        # "ctrl+shift+s" -> ["ctrl", "shift", "s"]
        self.bindings = {
            combo: (combo.lower().split("+"), callback)
            for combo, callback in bindings.items()
        }
        self.held: set = set()

        self.timer = QTimer(self)
        self.timer.setInterval(interval_ms)
        self.timer.timeout.connect(self.poll)

    def start(self) -> bool:
        if self.is_pressed is None:
            print("⚠ keyboard module not available. Hotkeys will not work.")
            print("  Install with: pip install keyboard")
            return False
        self.timer.start()
        print(f"✓ Hotkey polling started for {len(self.bindings)} bindings")
        return True

    def stop(self):
        if self.timer.isActive():
            self.timer.stop()
            print("✓ Hotkey polling stopped")

    def poll(self):
        """Check every binding once (called by the timer)"""
        for combo, (keys, callback) in self.bindings.items():
            try:
                pressed = all(self.is_pressed(key) for key in keys)
            except ImportError as e:
                # keyboard needs root on Linux
                print(f"⚠ Hotkeys disabled: {e}")
                self.stop()
                return
            except ValueError as e:
                print(f"⚠ Invalid hotkey {combo!r}: {e}")
                continue

            if pressed and combo not in self.held:
                # Mark before calling: the callback may spin a nested event loop
                self.held.add(combo)
                print(f"Hotkey triggered: {combo}")
                try:
                    callback()
                except Exception:
                    traceback.print_exc()
            elif not pressed:
                self.held.discard(combo)


class ScreenSolverApp(QObject):
    """Main application controller"""

    def __init__(self, settings: Settings, overlay=None, capture_provider=None,
                 inference: Optional[InferenceClient] = None,
                 is_pressed: Optional[Callable[[str], bool]] = None,
                 output_dir: Optional[Path] = None,
                 hide_delay_ms: int = Config.HIDE_DELAY_MS,
                 run_async: bool = True):
        super().__init__()
        self.settings = settings
        self.overlay = overlay if overlay is not None else OverlayWindow()
        self.session = Session()
        self.capture = CaptureDriver(self.overlay, capture_provider, output_dir, hide_delay_ms)
        self.inference = inference if inference is not None else InferenceClient(settings)
        self.dispatcher = HotkeyDispatcher(
            self.session, self.capture, self.inference, self.overlay, run_async=run_async
        )
        self.hotkeys = HotkeyPoller(self._bindings(), is_pressed=is_pressed)

    def _bindings(self) -> Dict[str, Callable[[], None]]:
        d = self.dispatcher
        keys = Config.HOTKEYS
        return {
            keys['capture_or_finalize']: d.capture_or_finalize,
            keys['add_to_multi_capture']: d.add_to_multi_capture,
            keys['reset']: d.reset,
            keys['toggle_visibility']: d.toggle_visibility,
            keys['move_up']: lambda: d.move('up'),
            keys['move_down']: lambda: d.move('down'),
            keys['move_left']: lambda: d.move('left'),
            keys['move_right']: lambda: d.move('right'),
        }

    def start(self):
        self.overlay.update_instruction(Config.DEFAULT_INSTRUCTION)
        self.overlay.show()
        self.hotkeys.start()

    def shutdown(self):
        """Stop polling and let a running submission finish or time out"""
        self.hotkeys.stop()
        self.dispatcher.wait_for_submission(self.shutdown_timeout_ms())

    def shutdown_timeout_ms(self) -> int:
        # A worker can run for the whole request timeout
        return int(self.settings.request_timeout * 1000) + 1000


def main(argv=None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Screenshot a question and let a model answer it")
    parser.add_argument("--config", type=Path, default=None,
                        help="Path to config.json (default: next to screen_solver.py)")
    args = parser.parse_args(argv)

    print("=" * 60)
    print("Screen Solver")
    print("=" * 60)

    load_dotenv()
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return 1
    print(f"✓ Using model: {settings.model}")

    if sys.platform.startswith('linux') and os.geteuid() != 0:
        print("⚠ WARNING: Not running as root")
        print("  The keyboard module needs root for global hotkeys on Linux.")

    app = QApplication(sys.argv)
    app.setApplicationName("Screen Solver")

    solver = ScreenSolverApp(settings)
    app.aboutToQuit.connect(solver.shutdown)
    solver.start()

    # Let Ctrl+C in the terminal reach Python while Qt runs
    signal.signal(signal.SIGINT, lambda *_: app.quit())
    heartbeat = QTimer()
    heartbeat.timeout.connect(lambda: None)
    heartbeat.start(250)

    print("\nHow to use:")
    print("  Ctrl+Shift+S  screenshot and answer (finalizes multi-capture)")
    print("  Ctrl+Shift+A  add a screenshot to multi-capture")
    print("  Ctrl+Shift+R  reset")
    print("  Ctrl+B        show / hide, Ctrl+Arrows move the overlay")
    print("\nPress Ctrl+C to exit.\n")

    return app.exec_()


if __name__ == "__main__":
    sys.exit(main())
