import io
from pathlib import Path

import pytest
from PIL import Image

from reels_converter.reels_engine.render import CodecEngineAdapter, EngineError
from reels_converter.reels_engine.session import ConversionSession

FAKE_MP4 = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64


class FakeEngine:
    """Stands in for ffmpeg: replays progress steps and writes a fake MP4."""

    def __init__(self, steps=(10, 35, 35, 70, 100), fail=False, output=FAKE_MP4):
        self.steps = steps
        self.fail = fail
        self.output = output
        self.runs = []
        self.listener = None
        self.binary = "fake-ffmpeg"
        self.version = "ffmpeg version fake"
        self.on_run = None

    def subscribe(self, listener):
        assert self.listener is None, "previous listener was not removed"
        self.listener = listener

    def unsubscribe(self, listener):
        if self.listener is listener:
            self.listener = None

    def run(self, args, duration, timeout=None):
        self.runs.append((list(args), duration))
        should_fail = self.fail
        if self.on_run is not None:
            self.on_run(args)
        for percent in self.steps:
            if self.listener is not None:
                self.listener(percent)
        if should_fail:
            raise EngineError("ffmpeg failed (code 1):\nInvalid argument")
        Path(args[-1]).write_bytes(self.output)


@pytest.fixture()
def make_image():
    def _make(color=(255, 0, 0), size=(64, 64), fmt="JPEG"):
        buf = io.BytesIO()
        Image.new("RGB", size, color).save(buf, format=fmt)
        return buf.getvalue()

    return _make


@pytest.fixture()
def fake_engine():
    return FakeEngine()


@pytest.fixture()
def adapter(fake_engine):
    return CodecEngineAdapter(engine_factory=lambda: fake_engine)


@pytest.fixture()
def session(adapter):
    s = ConversionSession(adapter=adapter)
    yield s
    s.close()


@pytest.fixture()
def app_client(adapter):
    # Import here so the module-level app is built after test env is set
    from reels_converter import backend

    app = backend.create_app({"TESTING": True}, adapter=adapter)
    client = app.test_client()
    yield client
    app.extensions["reels_session"].close()
