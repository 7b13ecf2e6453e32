import asyncio
import io
import logging
import random

from telethon.errors import FloodWaitError
from telethon.tl import types
from telethon.tl.functions.channels import CreateForumTopicRequest
from telethon.tl.functions.messages import SendReactionRequest

from .errors import DeliveryFailed, classify_error
from .models import (
    ANIMATION,
    AUDIO,
    CONTACT,
    DOCUMENT,
    IMAGE,
    LOCATION,
    PHOTO,
    STICKER,
    TEXT,
    VIDEO,
    VIDEO_NOTE,
    VOICE,
    DestinationMessage,
    SharedContact,
    SharedLocation,
)
from .transcoder import safe_filename

ANIMATED_STICKER_MIMES = {"video/webm", "application/x-tgsticker"}

# kind -> (default filename, send_file keyword arguments)
FILE_SENDS = {
    PHOTO: ("photo.jpg", {}),
    VIDEO: ("video.mp4", {"supports_streaming": True}),
    VIDEO_NOTE: ("video_note.mp4", {"video_note": True}),
    ANIMATION: (
        "animation.mp4",
        {"attributes": [types.DocumentAttributeAnimated()], "mime_type": "video/mp4"},
    ),
    AUDIO: ("audio.mp3", {"mime_type": "audio/mpeg"}),
    VOICE: ("voice.ogg", {"voice_note": True, "mime_type": "audio/ogg"}),
    DOCUMENT: ("document.bin", {"force_document": True}),
    STICKER: (
        "sticker.webp",
        {
            "attributes": [
                types.DocumentAttributeSticker(alt="", stickerset=types.InputStickerSetEmpty())
            ],
            "mime_type": "image/webp",
        },
    ),
}


async def _run_with_flood_wait(func, *args, **kwargs):
    while True:
        try:
            return await func(*args, **kwargs)
        except FloodWaitError as exc:
            wait_for = exc.seconds + 1
            logging.warning("FloodWait %ss; sleeping", wait_for)
            await asyncio.sleep(wait_for)


def _named_stream(data, filename):
    stream = io.BytesIO(data)
    stream.name = filename
    return stream


def _topic_id_from_message(message):
    reply_to = getattr(message, "reply_to", None)
    if not reply_to or not getattr(reply_to, "forum_topic", False):
        return None
    top_id = getattr(reply_to, "reply_to_top_id", None)
    if top_id:
        return top_id
    return getattr(reply_to, "reply_to_msg_id", None)


def _quoted_id_from_message(message):
    reply_to = getattr(message, "reply_to", None)
    if not reply_to:
        return None
    if getattr(reply_to, "forum_topic", False) and not getattr(reply_to, "reply_to_top_id", None):
        # plain post inside a topic: reply_to_msg_id is the topic itself
        return None
    return getattr(reply_to, "reply_to_msg_id", None)


def _thread_id_from_updates(result):
    for update in getattr(result, "updates", None) or []:
        message = getattr(update, "message", None)
        if isinstance(getattr(message, "action", None), types.MessageActionTopicCreate):
            return message.id
    for update in getattr(result, "updates", None) or []:
        message = getattr(update, "message", None)
        if message is not None and getattr(message, "id", None):
            return message.id
    return None


def _message_kind(message):
    if message.sticker:
        return STICKER
    if message.video_note:
        return VIDEO_NOTE
    if message.gif:
        return ANIMATION
    if message.voice:
        return VOICE
    if message.audio:
        return AUDIO
    if message.video:
        return VIDEO
    if message.photo:
        return IMAGE
    if message.contact:
        return CONTACT
    if message.geo:
        return LOCATION
    if message.document:
        return DOCUMENT
    return TEXT


class TelethonSurface:
    """Destination surface: one forum-enabled group reached through Telethon."""

    def __init__(self, client, group):
        self.client = client
        self.group = group

    @property
    def group_id(self):
        return getattr(self.group, "id", self.group)

    async def _call(self, func, *args, creating=False, **kwargs):
        try:
            return await _run_with_flood_wait(func, *args, **kwargs)
        except Exception as exc:
            raise classify_error(exc, creating=creating) from exc

    async def create_thread(self, title, icon_color):
        result = await self._call(
            self.client,
            CreateForumTopicRequest(
                channel=self.group,
                title=title,
                icon_color=icon_color,
                random_id=random.randrange(-2**62, 2**62),
            ),
            creating=True,
        )
        thread_id = _thread_id_from_updates(result)
        if not thread_id:
            raise DeliveryFailed(f"Topic creation for {title!r} returned no thread id")
        return thread_id

    async def send(self, post):
        reply_to = post.reply_to or post.thread_id
        if post.kind == TEXT:
            sent = await self._call(
                self.client.send_message,
                self.group,
                post.text,
                reply_to=reply_to,
                parse_mode=post.parse_mode,
                link_preview=False,
            )
        elif post.kind == CONTACT:
            media = types.InputMediaContact(
                phone_number=post.phone,
                first_name=post.first_name or "",
                last_name=post.last_name or "",
                vcard="",
            )
            sent = await self._call(self.client.send_file, self.group, media, reply_to=reply_to)
        elif post.kind == LOCATION:
            media = types.InputMediaGeoPoint(
                types.InputGeoPoint(lat=post.latitude, long=post.longitude)
            )
            sent = await self._call(self.client.send_file, self.group, media, reply_to=reply_to)
        elif post.kind in FILE_SENDS:
            default_name, options = FILE_SENDS[post.kind]
            options = dict(options)
            if post.mimetype and post.kind == DOCUMENT:
                options["mime_type"] = post.mimetype
            filename = post.filename or default_name
            sent = await self._call(
                self.client.send_file,
                self.group,
                _named_stream(post.data, filename),
                caption=post.text or None,
                parse_mode=post.parse_mode,
                reply_to=reply_to,
                **options,
            )
        else:
            raise ValueError(f"Unsupported post kind: {post.kind}")
        return getattr(sent, "id", None)

    async def pin(self, message_id, notify=False):
        await self._call(self.client.pin_message, self.group, message_id, notify=notify)

    async def react(self, message_id, emoji):
        try:
            await _run_with_flood_wait(
                self.client,
                SendReactionRequest(
                    peer=self.group,
                    msg_id=message_id,
                    reaction=[types.ReactionEmoji(emoticon=emoji)],
                ),
            )
            return True
        except Exception as exc:
            logging.debug("Failed to set reaction: %s", exc)
            return False

    async def download(self, handle):
        data = await self._call(handle.download_media, file=bytes)
        if not data:
            raise DeliveryFailed("Download failed")
        return data

    async def to_destination_message(self, message):
        """Build a DestinationMessage from a Telethon message."""
        sender = await message.get_sender()
        from_bot = bool(message.out or getattr(sender, "bot", False))
        kind = _message_kind(message)
        reply_to_id = _quoted_id_from_message(message)
        reply_to_text = None
        if reply_to_id:
            try:
                replied = await message.get_reply_message()
            except Exception as exc:
                logging.debug("Could not fetch replied message %s: %s", reply_to_id, exc)
                replied = None
            if replied is not None:
                reply_to_text = replied.raw_text or None
        contact = None
        if kind == CONTACT:
            media = message.contact
            name = " ".join(part for part in (media.first_name, media.last_name) if part)
            contact = SharedContact(display_name=name, vcard=media.vcard or None, phone=media.phone_number)
        location = None
        if kind == LOCATION:
            location = SharedLocation(message.geo.lat, message.geo.long)
        file_obj = message.file
        mime = getattr(file_obj, "mime_type", None)
        ext = getattr(file_obj, "ext", None)
        return DestinationMessage(
            message.id,
            message.chat_id,
            thread_id=_topic_id_from_message(message),
            text=message.raw_text or "",
            from_bot=from_bot,
            reply_to_id=reply_to_id,
            reply_to_text=reply_to_text,
            kind=kind,
            animated=kind == STICKER and mime in ANIMATED_STICKER_MIMES,
            filename=safe_filename(getattr(file_obj, "name", None), ext),
            contact=contact,
            location=location,
            handle=message,
        )
