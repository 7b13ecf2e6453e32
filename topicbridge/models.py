INDIVIDUAL = "individual"
GROUP = "group"
STATUS = "status"
CALL = "call"

GROUP_PREFIX = "group_"
SPECIAL_KINDS = (STATUS, CALL)

# Source message kinds
TEXT = "text"
IMAGE = "image"
VIDEO = "video"
VIDEO_NOTE = "video_note"
ANIMATION = "animation"
AUDIO = "audio"
VOICE = "voice"
STICKER = "sticker"
DOCUMENT = "document"
CONTACT = "contact"
LOCATION = "location"

# Destination post kind for still images
PHOTO = "photo"

MEDIA_KINDS = (IMAGE, VIDEO, VIDEO_NOTE, ANIMATION, AUDIO, VOICE, STICKER, DOCUMENT)


def kind_for_identifier(identifier):
    return GROUP if identifier.startswith(GROUP_PREFIX) else INDIVIDUAL


class TopicEntry:
    def __init__(self, identifier, thread_id, display_name, kind=None):
        self.identifier = identifier
        self.thread_id = thread_id
        self.display_name = display_name
        self.kind = kind or kind_for_identifier(identifier)

    def __repr__(self):
        return f"TopicEntry({self.identifier!r}, {self.thread_id!r}, {self.kind})"


class SpecialTopic:
    def __init__(self, kind, thread_id, display_name):
        self.kind = kind
        self.thread_id = thread_id
        self.display_name = display_name


class SharedContact:
    def __init__(self, display_name=None, vcard=None, phone=None):
        self.display_name = display_name
        self.vcard = vcard
        self.phone = phone


class SharedLocation:
    def __init__(self, latitude, longitude, name=None, address=None):
        self.latitude = latitude
        self.longitude = longitude
        self.name = name
        self.address = address


class SourceMessage:
    """A message received from the source network.

    ``chat`` is the source conversation address and ``sender`` the author's
    address; for one-to-one chats they are the same person. ``raw`` is kept
    opaque and only handed back to the source client to download media.
    """

    def __init__(
        self,
        message_id,
        chat,
        sender,
        kind=TEXT,
        body="",
        sender_name=None,
        is_group=False,
        group_subject=None,
        mimetype=None,
        animated=False,
        contacts=None,
        location=None,
        filename=None,
        raw=None,
    ):
        self.id = message_id
        self.chat = chat
        self.sender = sender
        self.kind = kind
        self.body = body or ""
        self.sender_name = sender_name
        self.is_group = is_group
        self.group_subject = group_subject
        self.mimetype = mimetype
        self.animated = animated
        self.contacts = contacts or []
        self.location = location
        self.filename = filename
        self.raw = raw

    @property
    def has_media(self):
        return self.kind in MEDIA_KINDS


class StatusEvent:
    def __init__(self, sender, name=None, caption=None, media=None, media_type=None,
                 timestamp=None, message_id=None):
        self.sender = sender
        self.name = name
        self.caption = caption
        self.media = media
        self.media_type = media_type
        self.timestamp = timestamp
        self.message_id = message_id


class CallEvent:
    def __init__(self, number, timestamp, name=None, is_video=False, status=None,
                 call_type=None, duration=None):
        self.number = number
        self.timestamp = timestamp
        self.name = name
        self.is_video = is_video
        self.status = status
        self.call_type = call_type
        self.duration = duration


class OutboundPost:
    """A destination-surface post addressed to one thread.

    ``kind`` picks the send primitive: text, photo, video, video_note,
    animation, audio, voice, document, sticker, contact or location.
    """

    def __init__(self, kind, thread_id, text=None, data=None, filename=None,
                 mimetype=None, phone=None, first_name=None, last_name=None,
                 latitude=None, longitude=None, parse_mode=None, reply_to=None):
        self.kind = kind
        self.thread_id = thread_id
        self.text = text
        self.data = data
        self.filename = filename
        self.mimetype = mimetype
        self.phone = phone
        self.first_name = first_name
        self.last_name = last_name
        self.latitude = latitude
        self.longitude = longitude
        self.parse_mode = parse_mode
        self.reply_to = reply_to

    def __repr__(self):
        return f"OutboundPost({self.kind!r}, thread={self.thread_id!r})"


class DestinationMessage:
    """A message posted by a user inside the bridged group."""

    def __init__(self, message_id, chat_id, thread_id=None, text="", from_bot=False,
                 reply_to_id=None, reply_to_text=None, kind=TEXT, animated=False,
                 filename=None, contact=None, location=None, handle=None):
        self.id = message_id
        self.chat_id = chat_id
        self.thread_id = thread_id
        self.text = text or ""
        self.from_bot = from_bot
        self.reply_to_id = reply_to_id
        self.reply_to_text = reply_to_text
        self.kind = kind
        self.animated = animated
        self.filename = filename
        self.contact = contact
        self.location = location
        self.handle = handle

    @property
    def has_media(self):
        return self.kind in MEDIA_KINDS


class SourceQuote:
    def __init__(self, message_id, text):
        self.message_id = message_id
        self.text = text


class SourcePayload:
    """Content sent to a source-network conversation."""

    def __init__(self, kind, text=None, data=None, mimetype=None, filename=None,
                 ptt=False, ptv=False, gif_playback=False, display_name=None,
                 vcard=None, latitude=None, longitude=None, quoted=None):
        self.kind = kind
        self.text = text
        self.data = data
        self.mimetype = mimetype
        self.filename = filename
        self.ptt = ptt
        self.ptv = ptv
        self.gif_playback = gif_playback
        self.display_name = display_name
        self.vcard = vcard
        self.latitude = latitude
        self.longitude = longitude
        self.quoted = quoted
