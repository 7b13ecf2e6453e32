import copy

import anyio
import pytest

from topicbridge.config import BridgeConfig
from topicbridge.errors import ThreadMissing
from topicbridge.router import Bridge
from topicbridge.source import SourceClient
from topicbridge.store import BridgeDB
from topicbridge.transcoder import MediaTranscoder


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeSurface:
    def __init__(self):
        self.created = []
        self.attempts = []
        self.sent = []
        self.pinned = []
        self.reactions = []
        self.downloads = []
        self.create_errors = []
        self.pin_errors = []
        self.fail_kinds = {}
        self.dead_threads = set()
        self.react_ok = True
        self.yield_on_send = False
        self.media = b"telegram-media"
        self.next_thread = 100
        self.next_message = 1000

    async def create_thread(self, title, icon_color):
        self.created.append((title, icon_color))
        if self.create_errors:
            raise self.create_errors.pop(0)
        self.next_thread += 1
        return self.next_thread

    async def send(self, post):
        if self.yield_on_send:
            await anyio.sleep(0)
        snapshot = copy.copy(post)
        self.attempts.append(snapshot)
        if post.thread_id in self.dead_threads:
            raise ThreadMissing("Bad Request: message thread not found")
        if post.kind in self.fail_kinds:
            raise self.fail_kinds[post.kind]
        self.next_message += 1
        snapshot.id = self.next_message
        self.sent.append(snapshot)
        return self.next_message

    async def pin(self, message_id, notify=False):
        if self.pin_errors:
            raise self.pin_errors.pop(0)
        self.pinned.append((message_id, notify))

    async def react(self, message_id, emoji):
        self.reactions.append((message_id, emoji))
        return self.react_ok

    async def download(self, handle):
        self.downloads.append(handle)
        return self.media

    def texts(self, thread_id=None):
        return [
            post.text
            for post in self.sent
            if post.kind == "text" and (thread_id is None or post.thread_id == thread_id)
        ]


class FakeSource(SourceClient):
    def __init__(self):
        self.sent = []
        self.reactions = []
        self.downloads = []
        self.fail = None
        self.about = None
        self.media = b"source-media"
        self._counter = 0

    async def send(self, address, payload):
        if self.fail is not None:
            raise self.fail
        self._counter += 1
        self.sent.append((address, payload))
        return f"wa-{self._counter}"

    async def react(self, address, key, emoji):
        if self.fail is not None:
            raise self.fail
        self.reactions.append((address, key, emoji))

    async def download(self, message):
        self.downloads.append(message.id)
        return self.media

    async def fetch_about(self, number):
        return self.about


@pytest.fixture
def config(tmp_path):
    return BridgeConfig(
        data_dir=str(tmp_path),
        db_path=str(tmp_path / "bridge.db"),
        tmp_dir=str(tmp_path / "scratch"),
        group_id=None,
        create_topics=True,
        forward_media=True,
        use_reactions=True,
        send_confirmation=True,
        reply_cache_size=100,
    )


@pytest.fixture
def store(config):
    db = BridgeDB(config.db_path)
    yield db
    db.close()


@pytest.fixture
def surface():
    return FakeSurface()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def transcoder(config):
    return MediaTranscoder(config.tmp_dir, available=False)


@pytest.fixture
def bridge(config, surface, source, store, transcoder):
    return Bridge(config, surface, source, store, transcoder=transcoder)
