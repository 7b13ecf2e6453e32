"""
Bootstrap for an embedding application.

The application owns the source-network connection. It builds its
SourceClient, then either awaits ``run_bridge(source)`` to serve until the
Telegram client disconnects, or calls ``start_bridge(source)`` and feeds
source events to ``bridge.forward_to_telegram``,
``bridge.forward_status_to_telegram`` and ``bridge.forward_call_to_telegram``.
"""

import logging

from telethon import TelegramClient, events

from .config import BridgeConfig, load_dotenv
from .router import Bridge
from .store import BridgeDB
from .surface import TelethonSurface


async def start_bridge(source, config=None):
    """Connect the Telegram side and return a running (bridge, client) pair.

    ``source`` is the source-network client; its own event loop is expected
    to call ``bridge.forward_to_telegram`` and friends.
    """
    load_dotenv()
    config = config or BridgeConfig()
    config.require_credentials()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )

    client = TelegramClient(config.session_name, config.api_id, config.api_hash)
    await client.start(bot_token=config.bot_token)
    group = await client.get_entity(config.group_id)

    surface = TelethonSurface(client, group)
    store = BridgeDB(config.db_path)
    bridge = Bridge(config, surface, source, store)
    await bridge.start()

    async def on_group_message(event):
        message = event.message
        if (message.raw_text or "").startswith("/"):
            return
        try:
            incoming = await surface.to_destination_message(message)
            await bridge.handle_destination_reply(incoming)
        except Exception:
            logging.exception("Failed to handle Telegram message %s", message.id)

    client.add_event_handler(on_group_message, events.NewMessage(chats=group))
    logging.info("Bridging topics in %s (%s)", getattr(group, "title", "?"), config.group_id)
    return bridge, client


async def run_bridge(source, config=None):
    bridge, client = await start_bridge(source, config)
    try:
        logging.info("Listening for Telegram replies...")
        await client.run_until_disconnected()
    finally:
        bridge.store.close()
