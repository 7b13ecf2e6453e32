from types import SimpleNamespace

import pytest
from telethon.errors import RPCError
from telethon.tl import types

from topicbridge.errors import DeliveryFailed, DuplicateName, ThreadMissing
from topicbridge.models import OutboundPost
from topicbridge.surface import (
    TelethonSurface,
    _quoted_id_from_message,
    _thread_id_from_updates,
    _topic_id_from_message,
)


class FakeClient:
    def __init__(self):
        self.calls = []
        self.error = None
        self.result = SimpleNamespace(updates=[])

    async def __call__(self, request):
        self.calls.append(("request", request, {}))
        if self.error is not None:
            raise self.error
        return self.result

    async def send_message(self, entity, text, **kwargs):
        self.calls.append(("send_message", text, kwargs))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(id=77)

    async def send_file(self, entity, file, **kwargs):
        self.calls.append(("send_file", file, kwargs))
        if self.error is not None:
            raise self.error
        return SimpleNamespace(id=78)

    async def pin_message(self, entity, message_id, notify=False):
        self.calls.append(("pin_message", message_id, {"notify": notify}))


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def telethon_surface(client):
    return TelethonSurface(client, SimpleNamespace(id=-1001))


def _topic_update(message_id):
    action = types.MessageActionTopicCreate(title="Alice", icon_color=0x6FB9F0)
    return SimpleNamespace(message=SimpleNamespace(id=message_id, action=action))


def test_thread_id_comes_from_topic_create_action():
    result = SimpleNamespace(
        updates=[SimpleNamespace(message=SimpleNamespace(id=9, action=None)), _topic_update(42)]
    )
    assert _thread_id_from_updates(result) == 42
    assert _thread_id_from_updates(SimpleNamespace(updates=[])) is None


def test_topic_and_quote_ids():
    in_topic = SimpleNamespace(
        reply_to=SimpleNamespace(forum_topic=True, reply_to_top_id=None, reply_to_msg_id=101)
    )
    assert _topic_id_from_message(in_topic) == 101
    assert _quoted_id_from_message(in_topic) is None

    quoting = SimpleNamespace(
        reply_to=SimpleNamespace(forum_topic=True, reply_to_top_id=101, reply_to_msg_id=555)
    )
    assert _topic_id_from_message(quoting) == 101
    assert _quoted_id_from_message(quoting) == 555

    general = SimpleNamespace(reply_to=None)
    assert _topic_id_from_message(general) is None
    assert _quoted_id_from_message(general) is None


@pytest.mark.anyio
async def test_create_thread(telethon_surface, client):
    client.result = SimpleNamespace(updates=[_topic_update(42)])
    assert await telethon_surface.create_thread("Alice (+1555)", 0x6FB9F0) == 42
    request = client.calls[0][1]
    assert request.title == "Alice (+1555)"
    assert request.icon_color == 0x6FB9F0


@pytest.mark.anyio
async def test_create_thread_duplicate_name(telethon_surface, client):
    client.error = RPCError(None, "TOPIC_TITLE_DUPLICATE: topic already exists", 400)
    with pytest.raises(DuplicateName):
        await telethon_surface.create_thread("Alice", 0)


@pytest.mark.anyio
async def test_create_thread_without_id_fails(telethon_surface):
    with pytest.raises(DeliveryFailed):
        await telethon_surface.create_thread("Alice", 0)


@pytest.mark.anyio
async def test_text_goes_to_thread(telethon_surface, client):
    message_id = await telethon_surface.send(OutboundPost("text", 101, text="hi", parse_mode="md"))
    assert message_id == 77
    name, text, kwargs = client.calls[0]
    assert (name, text) == ("send_message", "hi")
    assert kwargs["reply_to"] == 101
    assert kwargs["parse_mode"] == "md"


@pytest.mark.anyio
async def test_reply_target_overrides_thread(telethon_surface, client):
    await telethon_surface.send(OutboundPost("text", 101, text="ok", reply_to=500))
    assert client.calls[0][2]["reply_to"] == 500


@pytest.mark.anyio
async def test_voice_is_sent_as_voice_note(telethon_surface, client):
    assert await telethon_surface.send(OutboundPost("voice", 101, data=b"ogg")) == 78
    name, stream, kwargs = client.calls[0]
    assert name == "send_file"
    assert stream.name == "voice.ogg"
    assert stream.read() == b"ogg"
    assert kwargs["voice_note"] is True


@pytest.mark.anyio
async def test_document_keeps_name_and_mime(telethon_surface, client):
    post = OutboundPost("document", 101, data=b"%PDF", filename="report.pdf", mimetype="application/pdf")
    await telethon_surface.send(post)
    _, stream, kwargs = client.calls[0]
    assert stream.name == "report.pdf"
    assert kwargs["mime_type"] == "application/pdf"
    assert kwargs["force_document"] is True


@pytest.mark.anyio
async def test_location_uses_geo_point(telethon_surface, client):
    await telethon_surface.send(OutboundPost("location", 101, latitude=1.5, longitude=2.5))
    _, media, _ = client.calls[0]
    assert isinstance(media, types.InputMediaGeoPoint)
    assert (media.geo_point.lat, media.geo_point.long) == (1.5, 2.5)


@pytest.mark.anyio
async def test_deleted_topic_is_thread_missing(telethon_surface, client):
    client.error = RPCError(None, "TOPIC_DELETED", 400)
    with pytest.raises(ThreadMissing):
        await telethon_surface.send(OutboundPost("text", 101, text="hi"))


@pytest.mark.anyio
async def test_unknown_kind_is_rejected(telethon_surface):
    with pytest.raises(ValueError):
        await telethon_surface.send(OutboundPost("hologram", 101))


@pytest.mark.anyio
async def test_react_reports_failure(telethon_surface, client):
    assert await telethon_surface.react(5, "✅") is True
    client.error = RPCError(None, "REACTION_INVALID", 400)
    assert await telethon_surface.react(5, "✅") is False


def _telethon_message(**overrides):
    async def get_sender():
        return SimpleNamespace(bot=False)

    async def get_reply_message():
        return SimpleNamespace(raw_text="original")

    fields = dict(
        id=500,
        chat_id=-1001,
        out=False,
        raw_text="hello",
        reply_to=SimpleNamespace(forum_topic=True, reply_to_top_id=101, reply_to_msg_id=450),
        sticker=None,
        video_note=None,
        gif=None,
        voice=None,
        audio=None,
        video=None,
        photo=None,
        contact=None,
        geo=None,
        document=None,
        file=None,
        get_sender=get_sender,
        get_reply_message=get_reply_message,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.mark.anyio
async def test_destination_message_from_telethon(telethon_surface):
    message = await telethon_surface.to_destination_message(_telethon_message())
    assert (message.id, message.thread_id, message.kind) == (500, 101, "text")
    assert (message.reply_to_id, message.reply_to_text) == (450, "original")
    assert not message.from_bot


@pytest.mark.anyio
async def test_animated_sticker_is_detected(telethon_surface):
    raw = _telethon_message(
        raw_text="",
        sticker=object(),
        document=object(),
        file=SimpleNamespace(mime_type="video/webm", ext=".webm", name=None),
    )
    message = await telethon_surface.to_destination_message(raw)
    assert message.kind == "sticker"
    assert message.animated
    assert message.handle is raw
