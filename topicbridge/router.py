import logging
import re
import time

from .correlation import ReplyCorrelationCache, StatusRef
from .errors import RegistryUnresolved, ThreadMissing, TranscodeError
from .models import (
    ANIMATION,
    AUDIO,
    CALL,
    CONTACT,
    DOCUMENT,
    GROUP,
    GROUP_PREFIX,
    IMAGE,
    INDIVIDUAL,
    LOCATION,
    PHOTO,
    STATUS,
    STICKER,
    TEXT,
    VIDEO,
    VIDEO_NOTE,
    VOICE,
    OutboundPost,
    SourcePayload,
    SourceQuote,
)
from .registry import GROUP_LABEL, KeyedLock, TopicRegistry, fallback_contact_name
from .sender import RetryingSender
from .source import USER_SUFFIX, address_for, group_key, normalize_number
from .transcoder import MediaTranscoder, safe_filename

VCARD_TEL_RE = re.compile(r"TEL[^:]*:([^\n\r]+)", re.IGNORECASE)

AUDIO_MIMETYPE = "audio/mpeg"
VOICE_MIMETYPE = "audio/ogg"
SOURCE_AUDIO_MIMETYPE = "audio/ogg; codecs=opus"

STATUS_HINT = "💡 Reply to a status message to react to it on WhatsApp"
EMPTY_REPLY_TEXT = "📱 Message from Telegram"
SENT_TEXT = "✅ Message sent to WhatsApp"
FAILED_TEXT = "❌ Failed to send message to WhatsApp"
SUCCESS_GLYPH = "✅"
FAILURE_GLYPH = "❌"
DEFAULT_STATUS_REACTION = "👍"


def _phone_from_vcard(vcard):
    if not vcard:
        return None
    match = VCARD_TEL_RE.search(vcard)
    if not match:
        return None
    return re.sub(r"[^\d+]", "", match.group(1).strip()) or None


def _build_vcard(name, phone):
    return f"BEGIN:VCARD\nVERSION:3.0\nFN:{name}\nTEL:{phone}\nEND:VCARD"


def _now_ms():
    return int(time.time() * 1000)


class _Delivery:
    def __init__(self, post, correlate=True, fallback=None):
        self.post = post
        self.correlate = correlate
        self.fallback = fallback


class Bridge:
    """Moves messages between source conversations and destination topics."""

    def __init__(self, config, surface, source, store, registry=None, transcoder=None,
                 correlations=None):
        self.config = config
        self.surface = surface
        self.source = source
        self.store = store
        self.registry = registry or TopicRegistry(
            surface,
            store,
            create_topics=config.create_topics,
            about_lookup=source.fetch_about,
        )
        self.sender = RetryingSender(surface, self.registry)
        self.transcoder = transcoder or MediaTranscoder(
            config.tmp_dir,
            binary=config.ffmpeg_binary,
            timeout=config.transcode_timeout,
        )
        self.correlations = correlations or ReplyCorrelationCache(config.reply_cache_size)
        # one lock per conversation seen, kept for the process lifetime
        self._conversation_locks = KeyedLock()

    async def start(self):
        await self.registry.load()
        if await self.transcoder.probe():
            logging.info("FFmpeg available - full media conversion support enabled")

    # forward direction

    def _conversation(self, message):
        if message.is_group:
            key = group_key(message.chat)
            if not key:
                raise RegistryUnresolved(f"Message {message.id} has no group key")
            subject = message.group_subject or f"Group {key[:8]}"
            return f"{GROUP_PREFIX}{key}", f"{GROUP_LABEL}{subject}", GROUP
        number = normalize_number(message.sender)
        if not number:
            raise RegistryUnresolved(f"Message {message.id} has no sender number")
        name = (message.sender_name or "").strip()
        return number, name or fallback_contact_name(number), INDIVIDUAL

    def _sender_label(self, message):
        name = (message.sender_name or "").strip()
        return name or normalize_number(message.sender) or "Unknown"

    def _prefixed(self, message, text):
        if not message.is_group:
            return text
        label = self._sender_label(message)
        return f"{label}: {text}" if text else label

    async def forward_to_telegram(self, message):
        """Forward a source message into its topic.

        Returns the delivered destination message ids; failures are logged and
        the message is dropped.
        """
        try:
            return await self._forward(message)
        except RegistryUnresolved as exc:
            logging.error("Failed to get or create topic: %s", exc)
        except Exception:
            logging.exception("Error forwarding message %s to Telegram", message.id)
        return []

    async def _forward(self, message):
        identifier, display_name, kind = self._conversation(message)
        logging.info("Processing %s message from %s (%s)", kind, display_name, identifier)
        async with self._conversation_locks(identifier):
            thread_id = await self.registry.get_or_create(identifier, display_name, kind)
            if thread_id is None:
                raise RegistryUnresolved(f"No topic for {identifier}")
            deliveries = await self._build_deliveries(message, thread_id)
            delivered = []
            for delivery in deliveries:
                delivery.post.thread_id = thread_id
                message_id = await self._deliver(delivery, identifier, display_name, kind)
                thread_id = delivery.post.thread_id
                delivered.append(message_id)
                if delivery.correlate and message.id:
                    self.correlations.record(message_id, message.id)
        if delivered:
            await self._save_traffic(message, identifier, display_name)
            logging.info("Message forwarded to Telegram topic: %s", thread_id)
        return delivered

    async def _deliver(self, delivery, identifier, display_name, kind):
        try:
            return await self.sender.send(delivery.post, identifier, display_name, kind)
        except (ThreadMissing, RegistryUnresolved):
            # the sender already spent its one recreate on this message
            raise
        except Exception as exc:
            if delivery.fallback is None:
                raise
            logging.warning("Sending %s failed, falling back to %s: %s",
                            delivery.post.kind, delivery.fallback.kind, exc)
        delivery.fallback.thread_id = delivery.post.thread_id
        delivery.post = delivery.fallback
        return await self.sender.send(delivery.post, identifier, display_name, kind)

    async def _save_traffic(self, message, identifier, display_name):
        try:
            if message.is_group:
                await self.store.save_user(message.chat, message.group_subject, identifier)
            else:
                await self.store.save_user(message.sender, display_name, identifier)
            await self.store.save_message(
                message.id,
                message.sender,
                message.chat,
                message.body or "Media message",
                message.kind,
            )
        except Exception:
            logging.exception("Failed to save message %s", message.id)

    async def _build_deliveries(self, message, thread_id):
        if message.kind == CONTACT:
            return self._contact_deliveries(message, thread_id)
        if message.kind == LOCATION:
            return self._location_deliveries(message, thread_id)
        if message.has_media:
            if self.config.forward_media:
                return await self._media_deliveries(message, thread_id)
            text = message.body.strip() or ("sent media" if message.is_group else "")
        else:
            text = message.body.strip()
        if not text:
            logging.info("Skipping empty message %s", message.id)
            return []
        return [_Delivery(OutboundPost(TEXT, thread_id, text=self._prefixed(message, text)))]

    def _contact_deliveries(self, message, thread_id):
        deliveries = []
        for index, contact in enumerate(message.contacts):
            name = contact.display_name or (
                f"Contact {index + 1}" if len(message.contacts) > 1 else "Unknown Contact"
            )
            phone = contact.phone or _phone_from_vcard(contact.vcard)
            if phone:
                post = OutboundPost(CONTACT, thread_id, phone=phone, first_name=name)
            else:
                text = f"👤 Contact Shared\n\n📝 Name: {contact.display_name or 'Unknown'}"
                post = OutboundPost(TEXT, thread_id, text=self._prefixed(message, text))
            deliveries.append(_Delivery(post, correlate=index == 0))
        if message.is_group and deliveries:
            count = len(message.contacts)
            plural = "s" if count > 1 else ""
            text = f"{self._sender_label(message)} shared {count} contact{plural}"
            deliveries.append(_Delivery(OutboundPost(TEXT, thread_id, text=text), correlate=False))
        return deliveries

    def _location_deliveries(self, message, thread_id):
        location = message.location
        if location is None or location.latitude is None or location.longitude is None:
            logging.info("Skipping location without coordinates %s", message.id)
            return []
        deliveries = [
            _Delivery(
                OutboundPost(
                    LOCATION,
                    thread_id,
                    latitude=location.latitude,
                    longitude=location.longitude,
                )
            )
        ]
        lines = []
        if location.name:
            lines.append(f"📝 Name: {location.name}")
        if location.address:
            lines.append(f"🏠 Address: {location.address}")
        info = "\n".join(lines)
        if info or message.is_group:
            post = OutboundPost(TEXT, thread_id, text=self._prefixed(message, info))
            deliveries.append(_Delivery(post, correlate=False))
        return deliveries

    async def _media_deliveries(self, message, thread_id):
        data = await self.source.download(message)
        caption = self._prefixed(message, message.body.strip()) or None
        kind = message.kind
        if kind == STICKER:
            return [await self._sticker_delivery(message, data, caption, thread_id)]
        if kind == IMAGE:
            post_kind = ANIMATION if message.mimetype == "image/gif" else PHOTO
            post = OutboundPost(post_kind, thread_id, text=caption, data=data)
        elif kind == ANIMATION:
            post = OutboundPost(ANIMATION, thread_id, text=caption, data=data)
        elif kind == VIDEO_NOTE:
            data = await self.transcoder.to_round_video_note(data)
            post = OutboundPost(VIDEO_NOTE, thread_id, text=caption, data=data)
        elif kind == VIDEO:
            post = OutboundPost(VIDEO, thread_id, text=caption, data=data)
        elif kind == VOICE:
            post = OutboundPost(VOICE, thread_id, text=caption, data=data, mimetype=VOICE_MIMETYPE)
        elif kind == AUDIO:
            post = OutboundPost(AUDIO, thread_id, text=caption, data=data, mimetype=AUDIO_MIMETYPE)
        else:
            post = OutboundPost(
                DOCUMENT,
                thread_id,
                text=caption,
                data=data,
                mimetype=message.mimetype,
                filename=self._document_filename(message),
            )
        return [_Delivery(post)]

    async def _sticker_delivery(self, message, data, caption, thread_id):
        as_photo = OutboundPost(
            PHOTO, thread_id, text=caption or "🎭 Sticker (as image)", data=data
        )
        if not message.animated:
            return _Delivery(OutboundPost(STICKER, thread_id, data=data), fallback=as_photo)
        try:
            video = await self.transcoder.to_mp4(data)
        except TranscodeError as exc:
            logging.warning("Animated sticker conversion failed for %s: %s", message.id, exc)
            return _Delivery(as_photo)
        post = OutboundPost(ANIMATION, thread_id, text=caption or "🎭 Animated Sticker", data=video)
        return _Delivery(post, fallback=as_photo)

    def _document_filename(self, message):
        subtype = (message.mimetype or "").split("/")[-1].split(";")[0].strip() or "bin"
        return safe_filename(message.filename, subtype) or f"document_{_now_ms()}.{subtype}"

    # special topics

    async def forward_status_to_telegram(self, status):
        try:
            return await self._forward_status(status)
        except RegistryUnresolved as exc:
            logging.error("Failed to get or create status topic: %s", exc)
        except Exception:
            logging.exception("Error forwarding status to Telegram")
        return None

    async def _forward_status(self, status):
        caption = (status.caption or "").strip()
        if not caption and not status.media:
            logging.info("Skipping status without caption or media from %s", status.name)
            return None
        thread_id = await self.registry.get_or_create_special(STATUS)
        if thread_id is None:
            raise RegistryUnresolved("No status topic")
        number = normalize_number(status.sender)
        timestamp = status.timestamp or _now_ms()
        header = f"📱 *{status.name or number}*"
        if status.media and self.config.forward_media:
            text = f"{header}\n\n{caption}" if caption else header
            media_type = (status.media_type or "").lower()
            if media_type in ("image", "imagemessage"):
                post = OutboundPost(PHOTO, thread_id, text=text, data=status.media, parse_mode="md")
            elif media_type in ("video", "videomessage"):
                post = OutboundPost(VIDEO, thread_id, text=text, data=status.media, parse_mode="md")
            else:
                post = OutboundPost(
                    DOCUMENT,
                    thread_id,
                    text=text,
                    data=status.media,
                    parse_mode="md",
                    filename=f"status_{_now_ms()}.{media_type or 'bin'}",
                )
        elif caption:
            post = OutboundPost(TEXT, thread_id, text=f"{header}\n\n{caption}", parse_mode="md")
        else:
            logging.info("Skipping media status from %s; media forwarding is off", status.name)
            return None
        message_id = await self.sender.send(post)
        ref = StatusRef(number, timestamp, status.message_id)
        self.correlations.record(message_id, ref)
        logging.info("Status mapped: Telegram %s -> %s", message_id, ref)
        return message_id

    async def forward_call_to_telegram(self, call):
        try:
            return await self._forward_call(call)
        except RegistryUnresolved as exc:
            logging.error("Failed to get or create call topic: %s", exc)
        except Exception:
            logging.exception("Error forwarding call to Telegram")
        return None

    async def _forward_call(self, call):
        thread_id = await self.registry.get_or_create_special(CALL)
        if thread_id is None:
            raise RegistryUnresolved("No call topic")
        number = normalize_number(call.number)
        label = "Video" if call.is_video else "Voice"
        when = call.timestamp
        if hasattr(when, "strftime"):
            when = when.strftime("%Y-%m-%d %H:%M:%S")
        lines = [
            f"📞 *{label} Call*",
            "",
            f"👤 *From:* {call.name or number} (+{number})",
            f"⏰ *Time:* {when}",
            f"🔄 *Status:* {call.status or 'Incoming'}",
        ]
        if call.call_type == "group":
            lines.append("👥 *Type:* Group Call")
        if call.duration:
            lines.append(f"⏱️ *Duration:* {call.duration} seconds")
        outcome = {
            "offer": "🔴 *Incoming call{}*".format(" (Auto-rejected)" if self.config.anti_call else ""),
            "accept": "🟢 *Call answered*",
            "reject": "🔴 *Call rejected*",
            "timeout": "⏰ *Call timed out*",
        }.get(call.status)
        if outcome:
            lines.extend(["", outcome])
        post = OutboundPost(TEXT, thread_id, text="\n".join(lines), parse_mode="md")
        message_id = await self.sender.send(post)
        logging.info("Call log forwarded to Telegram: %s call from %s", label, call.name or number)
        return message_id

    # reverse direction

    async def handle_destination_reply(self, message):
        """Route a post made inside the group back to the source network.

        Returns True/False for an attempted send, None when the message is not
        ours to route.
        """
        if self.config.group_id is not None and message.chat_id != self.config.group_id:
            return None
        if message.from_bot or message.thread_id is None:
            return None
        special = self.registry.special_kind_for(message.thread_id)
        if special == STATUS:
            return await self._handle_status_reply(message)
        if special == CALL:
            return None
        identifier = self.registry.reverse_resolve(message.thread_id)
        if identifier is None:
            logging.warning("No identifier found for topic ID: %s", message.thread_id)
            return None
        address = address_for(identifier)
        async with self._conversation_locks(identifier):
            quoted = None
            source_id = self.correlations.lookup_message(message.reply_to_id)
            if source_id is not None:
                quoted = SourceQuote(source_id, message.reply_to_text or "Media message")
                logging.info("Replying to WhatsApp message: %s", source_id)
            try:
                payload = await self._build_source_payload(message, quoted)
                sent_id = await self.source.send(address, payload)
            except Exception as exc:
                logging.error("Failed to send %s to WhatsApp %s: %s", message.kind, address, exc)
                await self._confirm(message, False)
                return False
        if sent_id:
            self.correlations.record(message.id, sent_id)
        await self._confirm(message, True)
        logging.info("Message sent to WhatsApp: %s", address)
        return True

    async def _build_source_payload(self, message, quoted):
        if message.kind == CONTACT:
            contact = message.contact
            name = contact.display_name or "Unknown"
            vcard = contact.vcard or _build_vcard(name, contact.phone or "")
            return SourcePayload(CONTACT, display_name=name, vcard=vcard, quoted=quoted)
        if message.kind == LOCATION:
            return SourcePayload(
                LOCATION,
                latitude=message.location.latitude,
                longitude=message.location.longitude,
                quoted=quoted,
            )
        if not message.has_media:
            return SourcePayload(TEXT, text=message.text or EMPTY_REPLY_TEXT, quoted=quoted)
        data = await self.surface.download(message.handle)
        caption = message.text
        kind = message.kind
        if kind == IMAGE:
            return SourcePayload(IMAGE, data=data, text=caption, quoted=quoted)
        if kind == VIDEO:
            return SourcePayload(VIDEO, data=data, text=caption, quoted=quoted)
        if kind == VIDEO_NOTE:
            return SourcePayload(VIDEO, data=data, text=caption, ptv=True, quoted=quoted)
        if kind == ANIMATION:
            return SourcePayload(VIDEO, data=data, text=caption, gif_playback=True, quoted=quoted)
        if kind in (AUDIO, VOICE):
            return SourcePayload(
                AUDIO,
                data=data,
                text=caption,
                mimetype=SOURCE_AUDIO_MIMETYPE,
                ptt=kind == VOICE,
                quoted=quoted,
            )
        if kind == STICKER:
            try:
                webp = await self.transcoder.to_webp(data, animated=message.animated)
            except TranscodeError as exc:
                logging.warning("Failed to convert Telegram sticker: %s", exc)
                return SourcePayload(IMAGE, data=data, text=caption, quoted=quoted)
            return SourcePayload(STICKER, data=webp, quoted=quoted)
        return SourcePayload(
            DOCUMENT,
            data=data,
            text=caption,
            filename=message.filename,
            quoted=quoted,
        )

    async def _handle_status_reply(self, message):
        ref = self.correlations.lookup_status(message.reply_to_id)
        if ref is None:
            hint = OutboundPost(TEXT, message.thread_id, text=STATUS_HINT, reply_to=message.id)
            try:
                await self.surface.send(hint)
            except Exception as exc:
                logging.warning("Could not send status hint: %s", exc)
            return None
        emoji = (message.text or DEFAULT_STATUS_REACTION)[:1]
        address = f"{ref.sender}{USER_SUFFIX}"
        key = {"remote_jid": address, "from_me": False, "id": ref.key_id}
        try:
            await self.source.react(address, key, emoji)
        except Exception as exc:
            logging.error("Failed to send status reaction: %s", exc)
            await self._confirm(message, False)
            return False
        await self._confirm(message, True)
        logging.info("Status reaction sent to WhatsApp: %s to %s", emoji, ref.sender)
        return True

    async def _confirm(self, message, success):
        glyph = SUCCESS_GLYPH if success else FAILURE_GLYPH
        if self.config.use_reactions and await self.surface.react(message.id, glyph):
            return
        if not self.config.send_confirmation:
            return
        post = OutboundPost(
            TEXT,
            message.thread_id,
            text=SENT_TEXT if success else FAILED_TEXT,
            reply_to=message.id,
        )
        try:
            await self.surface.send(post)
        except Exception as exc:
            logging.warning("Failed to send confirmation message: %s", exc)

    # collaborator API

    async def get_or_create_topic(self, identifier, display_name):
        return await self.registry.get_or_create(identifier, display_name)

    def get_topic_mappings(self):
        forward, reverse = self.registry.mappings()
        return {"topic_mapping": forward, "reverse_topic_mapping": reverse}

    async def get_status(self):
        try:
            stats = await self.store.get_stats()
        except Exception as exc:
            logging.warning("Could not read store stats: %s", exc)
            stats = None
        forward, _ = self.registry.mappings()
        return {
            "contact_topics": len(forward),
            "status_topic": self.registry.resolve_special(STATUS) is not None,
            "call_topic": self.registry.resolve_special(CALL) is not None,
            "reactions": bool(self.config.use_reactions),
            "ffmpeg": self.transcoder.available,
            "store": stats,
        }
