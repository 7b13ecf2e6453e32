from telethon.errors import RPCError

THREAD_MISSING_CODES = {
    "TOPIC_DELETED",
    "TOPIC_ID_INVALID",
    "TOPIC_CLOSED",
    "MESSAGE_THREAD_NOT_FOUND",
}
THREAD_MISSING_TERMS = ("thread", "topic", "not found")
DUPLICATE_NAME_TERMS = ("duplicate", "already exists")


class BridgeError(Exception):
    pass


class DeliveryFailed(BridgeError):
    pass


class ThreadMissing(DeliveryFailed):
    pass


class DuplicateName(BridgeError):
    pass


class RegistryUnresolved(BridgeError):
    pass


class TranscodeError(BridgeError):
    pass


class TranscodeUnavailable(TranscodeError):
    pass


class TranscodeFailed(TranscodeError):
    pass


def _error_code(exc):
    if isinstance(exc, RPCError):
        return (exc.message or "").upper()
    return None


def is_thread_missing(exc):
    if isinstance(exc, ThreadMissing):
        return True
    if isinstance(exc, BridgeError) and not isinstance(exc, DeliveryFailed):
        return False
    code = _error_code(exc)
    if code and code in THREAD_MISSING_CODES:
        return True
    text = str(exc).lower()
    return any(term in text for term in THREAD_MISSING_TERMS)


def is_duplicate_name(exc):
    if isinstance(exc, DuplicateName):
        return True
    text = str(exc).lower()
    return any(term in text for term in DUPLICATE_NAME_TERMS)


def classify_error(exc, creating=False):
    """Translate a raw client exception into the bridge taxonomy.

    Structured RPC codes win; the text match is the fallback for clients that
    only give us prose. Thread creation failures are checked for name
    collisions first since their text usually mentions the topic too.
    """
    if isinstance(exc, BridgeError):
        return exc
    if creating and is_duplicate_name(exc):
        error = DuplicateName(str(exc))
    elif not creating and is_thread_missing(exc):
        error = ThreadMissing(str(exc))
    else:
        error = DeliveryFailed(str(exc))
    error.__cause__ = exc
    return error
