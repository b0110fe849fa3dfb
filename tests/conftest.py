import pytest

from config import Config
from data_models import PlaylistCursor, StatusStore
from flask_app import create_app
from transition_engine import MediaLoadError, Overlay, PlaybackRejectedError, Player


class FakePlayer(Player):
    def __init__(self, name, failing_urls=None):
        super().__init__(name)
        self.calls = []
        self.url = None
        self.muted = None
        self.visible = None
        self.reject_play = False
        self.failing_urls = failing_urls if failing_urls is not None else set()
        self._paused = True

    @property
    def paused(self):
        return self._paused

    async def load(self, url):
        self.calls.append(("load", url))
        self.url = url

    async def wait_ready(self):
        if self.url in self.failing_urls:
            raise MediaLoadError(f"cannot load {self.url}")

    async def play(self):
        self.calls.append(("play",))
        if self.reject_play:
            raise PlaybackRejectedError("autoplay blocked")
        self._paused = False

    async def pause(self):
        self.calls.append(("pause",))
        self._paused = True

    async def seek_start(self):
        self.calls.append(("seek_start",))

    async def set_muted(self, muted):
        self.calls.append(("set_muted", muted))
        self.muted = muted

    async def set_visible(self, visible):
        self.calls.append(("set_visible", visible))
        self.visible = visible

    async def show_text(self, text, duration):
        self.calls.append(("show_text", text, duration))


class FakeOverlay(Overlay):
    def __init__(self):
        self.fades = []

    async def fade(self, start, end, duration):
        self.fades.append((start, end))


@pytest.fixture
def players():
    failing = set()
    return FakePlayer("one", failing), FakePlayer("two", failing)


@pytest.fixture
def overlay():
    return FakeOverlay()


@pytest.fixture
def config():
    return Config(ha_url="http://ha.local:8123", ha_token="secret", advertise=False)


class FakeVideoSource:
    def __init__(self, files):
        self.files = files
        self.error = None
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.files)


@pytest.fixture
def server(config):
    store = StatusStore()
    cursor = PlaylistCursor(["a.mp4", "b.mp4", "c.mp4"])
    source = FakeVideoSource(["x.mp4", "y.mp4"])
    flask_app, socketio, router = create_app(config, store, cursor, source)
    flask_app.config["TESTING"] = True

    http = flask_app.test_client()
    sio = socketio.test_client(flask_app)
    sio.get_received()  # drop the status sent on connect

    class Server:
        pass

    s = Server()
    s.app, s.socketio, s.router = flask_app, socketio, router
    s.store, s.cursor, s.source = store, cursor, source
    s.http, s.sio = http, sio
    yield s
    if sio.is_connected():
        sio.disconnect()
