from datetime import datetime, timezone

import pytest

from config_validation import SlideshowConfig
from gframe_types import ImageRef


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ManualDispatcher:
    """Runs work inline but holds completions until run_pending(), like the main loop."""

    def __init__(self):
        self.pending = []
        self.submitted = []

    def call_soon(self, fn, *args):
        self.pending.append((fn, args))

    def submit(self, fn, *args, on_success=None, on_failure=None):
        self.submitted.append(fn)
        try:
            result = fn(*args)
        except Exception as e:
            if on_failure is not None:
                self.call_soon(on_failure, e)
            return None
        if on_success is not None:
            self.call_soon(on_success, result)
        return None

    def run_pending(self):
        count = 0
        while self.pending:
            fn, args = self.pending.pop(0)
            fn(*args)
            count += 1
        return count


class FakeSlot:
    def __init__(self):
        self.opacity = None
        self.loads = []

    def set_source(self, url, on_success, on_failure):
        self.loads.append((url, on_success, on_failure))

    def set_opacity(self, value):
        self.opacity = value

    @property
    def last_url(self):
        return self.loads[-1][0] if self.loads else None

    def succeed(self, index=-1):
        self.loads[index][1]()

    def fail(self, index=-1, error=None):
        self.loads[index][2](error)


class FakeOverlay:
    def __init__(self):
        self.text = None

    def set_text(self, text):
        self.text = text


class FakeSurface:
    def __init__(self, width=1280, height=800):
        self.slots = [FakeSlot(), FakeSlot()]
        self.overlay = FakeOverlay()
        self.size = (width, height)
        self.messages = []
        self.message = None

    def viewport(self):
        return self.size

    def show_message(self, text):
        self.messages.append(text)
        self.message = text

    def clear_message(self):
        self.message = None


class FakeGateway:
    def __init__(self, photos=None):
        self.photos = list(photos or [])
        self.list_error = None
        self.resolve_error = None
        self.list_calls = []
        self.resolve_calls = []

    def list_images(self, folder_id, recursive=False):
        self.list_calls.append((folder_id, recursive))
        if self.list_error is not None:
            raise self.list_error
        return list(self.photos)

    def resolve_display_url(self, ref, width, height):
        self.resolve_calls.append((ref, width, height))
        if self.resolve_error is not None:
            raise self.resolve_error
        return f"https://img.example/{ref.id}?s={max(width, height)}"

    @staticmethod
    def fallback_url(ref):
        return f"https://drive.google.com/uc?export=view&id={ref.id}"


def make_refs(*names):
    return [
        ImageRef(id=f"id-{name}", display_name=f"{name}.jpg",
                 created_at=datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc))
        for name in names
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dispatcher():
    return ManualDispatcher()


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def make_config():
    def _make(**overrides):
        values = dict(
            folder_id="folder-1",
            update_interval=30.0,
            refresh_interval=1800.0,
            shuffle=False,
            retry_backoff=1.0,
            startup_delay=1.0,
        )
        values.update(overrides)
        return SlideshowConfig(**values)
    return _make
