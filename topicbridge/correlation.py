from collections import OrderedDict


class StatusRef:
    def __init__(self, sender, timestamp, message_id=None):
        self.sender = sender
        self.timestamp = timestamp
        self.message_id = message_id

    @property
    def key_id(self):
        return self.message_id or f"status_{self.timestamp}"

    def __eq__(self, other):
        if not isinstance(other, StatusRef):
            return NotImplemented
        return (self.sender, self.timestamp, self.message_id) == (
            other.sender,
            other.timestamp,
            other.message_id,
        )

    def __hash__(self):
        return hash((self.sender, self.timestamp, self.message_id))

    def __repr__(self):
        return f"StatusRef({self.sender!r}, {self.timestamp!r})"


class ReplyCorrelationCache:
    """Maps delivered destination message ids to what they came from.

    Values are source message ids for chat posts and ``StatusRef`` for status
    posts. Oldest entries go first once ``capacity`` is exceeded.
    """

    def __init__(self, capacity=5000):
        self.capacity = capacity
        self._entries = OrderedDict()

    def record(self, destination_message_id, source_ref):
        if destination_message_id is None or source_ref is None:
            return
        self._entries[destination_message_id] = source_ref
        self._entries.move_to_end(destination_message_id)
        while self.capacity and len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def lookup(self, destination_message_id):
        if destination_message_id is None:
            return None
        return self._entries.get(destination_message_id)

    def lookup_status(self, destination_message_id):
        ref = self.lookup(destination_message_id)
        return ref if isinstance(ref, StatusRef) else None

    def lookup_message(self, destination_message_id):
        ref = self.lookup(destination_message_id)
        if ref is None or isinstance(ref, StatusRef):
            return None
        return ref

    def __len__(self):
        return len(self._entries)

    def __contains__(self, destination_message_id):
        return destination_message_id in self._entries
