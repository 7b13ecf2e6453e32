"""
Source-network client contract.

The bridge never talks to the source network directly; the embedding
application hands it an object implementing this interface.
"""

import re
from abc import ABC, abstractmethod

GROUP_SUFFIX = "@g.us"
USER_SUFFIX = "@s.whatsapp.net"


def normalize_number(raw):
    """Strip the address suffix, any non-digit characters and a leading ``+``."""
    if not raw:
        return ""
    number = str(raw).split("@", 1)[0].split(":", 1)[0]
    number = re.sub(r"[^\d+]", "", number)
    if number.startswith("+"):
        number = number[1:]
    return number


def group_key(chat):
    return str(chat).replace(GROUP_SUFFIX, "")


def address_for(identifier):
    if identifier.startswith("group_"):
        return identifier[len("group_"):] + GROUP_SUFFIX
    return identifier + USER_SUFFIX


class SourceClient(ABC):
    @abstractmethod
    async def send(self, address, payload):
        """
        Send a SourcePayload to a conversation address.
        Returns the source message id when the client reports one.
        """

    @abstractmethod
    async def react(self, address, key, emoji):
        """
        React to a source message.

        ``key`` is a dict with ``remote_jid``, ``from_me`` and ``id``.
        """

    @abstractmethod
    async def download(self, message):
        """Return the media bytes of an inbound SourceMessage."""

    async def fetch_about(self, number):
        """Return the "about" text of a contact, if the network exposes it."""
        return None
