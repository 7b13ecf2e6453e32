import asyncio
import logging
import time

from .errors import is_duplicate_name
from .models import (
    CALL,
    GROUP,
    GROUP_PREFIX,
    SPECIAL_KINDS,
    STATUS,
    TEXT,
    OutboundPost,
    SpecialTopic,
    TopicEntry,
    kind_for_identifier,
)

INDIVIDUAL_ICON = 0x6FB9F0
GROUP_ICON = 0x00FF00
STATUS_ICON = 0x00FF00
CALL_ICON = 0xFF0000

GROUP_LABEL = "🏷️ "

SPECIAL_TITLES = {
    STATUS: "📱 Status Updates",
    CALL: "📞 Call Logs",
}
SPECIAL_ICONS = {
    STATUS: STATUS_ICON,
    CALL: CALL_ICON,
}
SPECIAL_INTROS = {
    STATUS: (
        "📱 *WhatsApp Status Updates*\n\n"
        "🔄 This topic shows all WhatsApp status updates\n"
        "📊 Status views, images, videos will appear here\n"
        "💬 Reply to a status to react to it on WhatsApp\n"
        "⚠️ Only statuses with captions or media are forwarded"
    ),
    CALL: (
        "📞 *WhatsApp Call Logs*\n\n"
        "📋 All incoming and outgoing calls will be logged here\n"
        "📱 Voice and video calls included\n"
        "⚠️ This is a read-only topic"
    ),
}


class KeyedLock:
    """One asyncio.Lock per key, created on first use.

    Locks are never dropped, so the map grows with the number of distinct keys.
    """

    def __init__(self):
        self._locks = {}

    def __call__(self, key):
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


def fallback_contact_name(number):
    return f"Contact {number}"


class TopicRegistry:
    def __init__(self, surface, store, create_topics=True, about_lookup=None):
        self.surface = surface
        self.store = store
        self.create_topics = create_topics
        self.about_lookup = about_lookup
        self._forward = {}
        self._reverse = {}
        self._names = {}
        self._specials = {}
        self._special_attempted = set()
        self._pinned = {}
        self._contact_names = {}
        self._creation_locks = KeyedLock()

    async def load(self):
        try:
            mappings = await self.store.load_topics()
        except Exception:
            logging.exception("Error loading topic mappings")
            return
        self._forward = dict(mappings.get("forward") or {})
        self._reverse = dict(mappings.get("reverse") or {})
        self._names = dict(mappings.get("names") or {})
        for kind in SPECIAL_KINDS:
            thread_id = mappings.get(kind)
            if thread_id:
                self._specials[kind] = SpecialTopic(kind, thread_id, SPECIAL_TITLES[kind])
                logging.info("%s topic loaded: %s", kind.capitalize(), thread_id)
        logging.info("Loaded %s topic mappings from database", len(self._forward))

    def resolve(self, identifier):
        return self._forward.get(identifier)

    def reverse_resolve(self, thread_id):
        return self._reverse.get(thread_id)

    def entry(self, identifier):
        thread_id = self._forward.get(identifier)
        if thread_id is None:
            return None
        return TopicEntry(identifier, thread_id, self._names.get(identifier))

    def mappings(self):
        return dict(self._forward), dict(self._reverse)

    def is_pinned(self, thread_id):
        return thread_id in self._pinned

    def invalidate(self, identifier):
        thread_id = self._forward.pop(identifier, None)
        if thread_id is None:
            return None
        if self._reverse.get(thread_id) == identifier:
            del self._reverse[thread_id]
        self._pinned.pop(thread_id, None)
        logging.info("Dropped mapping %s -> %s", identifier, thread_id)
        return thread_id

    def contact_name(self, number, fallback_name=None):
        cached = self._contact_names.get(number)
        if cached:
            return cached
        name = fallback_name or fallback_contact_name(number)
        self._contact_names[number] = name
        return name

    def _title_for(self, identifier, display_name, kind, suffix=None):
        if kind == GROUP:
            title = display_name
            return f"{title} ({suffix})" if suffix else title
        title = f"{self.contact_name(identifier, display_name)} (+{identifier})"
        return f"{title} {suffix}" if suffix else title

    async def get_or_create(self, identifier, display_name, kind=None):
        thread_id = self._forward.get(identifier)
        if thread_id is not None:
            return thread_id
        if not self.create_topics:
            return None
        kind = kind or kind_for_identifier(identifier)
        async with self._creation_locks(identifier):
            thread_id = self._forward.get(identifier)
            if thread_id is not None:
                return thread_id
            thread_id = await self._create(identifier, display_name, kind)
            if thread_id is None:
                return None
            self._forward[identifier] = thread_id
            self._reverse[thread_id] = identifier
            self._names[identifier] = display_name
            try:
                await self.store.save_topic(identifier, thread_id, display_name)
            except Exception:
                logging.exception("Failed to persist topic for %s", identifier)
            await self._post_info(thread_id, identifier, display_name, kind)
            logging.info("Created Telegram topic for %s: %s", display_name, thread_id)
            return thread_id

    async def _create(self, identifier, display_name, kind):
        icon = GROUP_ICON if kind == GROUP else INDIVIDUAL_ICON
        title = self._title_for(identifier, display_name, kind)
        logging.info("Creating Telegram topic: %s", title)
        try:
            return await self.surface.create_thread(title, icon)
        except Exception as exc:
            logging.error("Error creating topic for %s: %s", display_name, exc)
            if not is_duplicate_name(exc):
                return None
        suffix = str(int(time.time() * 1000))[-4:]
        title = self._title_for(identifier, display_name, kind, suffix)
        logging.info("Retrying with unique name: %s", title)
        try:
            return await self.surface.create_thread(title, icon)
        except Exception as exc:
            logging.error("Retry failed for %s: %s", display_name, exc)
            return None

    async def _post_info(self, thread_id, identifier, display_name, kind):
        if thread_id in self._pinned:
            return
        if kind == GROUP:
            text = self._group_info(identifier, display_name)
        else:
            text = await self._contact_info(identifier, display_name)
        try:
            message_id = await self.surface.send(
                OutboundPost(TEXT, thread_id, text=text, parse_mode="md")
            )
        except Exception as exc:
            logging.error("Error creating info message for %s: %s", identifier, exc)
            return
        if not message_id:
            return
        for notify in (False, True):
            try:
                await self.surface.pin(message_id, notify=notify)
            except Exception as exc:
                logging.warning("Could not pin info message in topic %s: %s", thread_id, exc)
                continue
            self._pinned[thread_id] = message_id
            logging.info("Pinned info for topic %s", thread_id)
            return

    async def _contact_info(self, number, display_name):
        about = None
        if self.about_lookup is not None:
            try:
                about = await self.about_lookup(number)
            except Exception as exc:
                logging.debug("Error getting user info for %s: %s", number, exc)
        lines = [
            "👤 *Contact Information*",
            "",
            f"📝 *Name:* {self.contact_name(number, display_name)}",
            f"📞 *WhatsApp:* +{number}",
        ]
        if about:
            lines.append(f"💬 *About:* {about}")
        lines.extend(["", "🔄 *Reply to this topic to send messages to WhatsApp*"])
        return "\n".join(lines)

    def _group_info(self, identifier, display_name):
        name = display_name.replace(GROUP_LABEL, "") if display_name else identifier
        return "\n".join(
            [
                "🏷️ *Group Information*",
                "",
                f"📝 *Name:* {name}",
                f"🆔 *Group ID:* {identifier[len(GROUP_PREFIX):]}",
                "",
                "🔄 *Reply to this topic to send messages to the WhatsApp group*",
                "👥 *All group members will see your message*",
                "💬 *Reply to a message to quote it on WhatsApp*",
            ]
        )

    def resolve_special(self, kind):
        topic = self._specials.get(kind)
        return topic.thread_id if topic else None

    def special_kind_for(self, thread_id):
        for kind, topic in self._specials.items():
            if topic.thread_id == thread_id:
                return kind
        return None

    async def get_or_create_special(self, kind):
        if kind not in SPECIAL_KINDS:
            raise ValueError(f"Unknown special topic kind: {kind}")
        thread_id = self.resolve_special(kind)
        if thread_id is not None:
            return thread_id
        if not self.create_topics:
            return None
        async with self._creation_locks(f"special:{kind}"):
            thread_id = self.resolve_special(kind)
            if thread_id is not None or kind in self._special_attempted:
                return thread_id
            self._special_attempted.add(kind)
            title = SPECIAL_TITLES[kind]
            logging.info("Creating %s topic...", title)
            try:
                thread_id = await self.surface.create_thread(title, SPECIAL_ICONS[kind])
            except Exception as exc:
                logging.error("Error creating %s topic: %s", kind, exc)
                return None
            self._specials[kind] = SpecialTopic(kind, thread_id, title)
            try:
                await self.store.save_special_topic(kind, thread_id)
            except Exception:
                logging.exception("Failed to persist %s topic", kind)
            try:
                await self.surface.send(
                    OutboundPost(TEXT, thread_id, text=SPECIAL_INTROS[kind], parse_mode="md")
                )
            except Exception as exc:
                logging.warning("Could not post intro in %s topic: %s", kind, exc)
            logging.info("Created %s topic: %s", kind, thread_id)
            return thread_id
