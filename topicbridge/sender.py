import logging

from .errors import RegistryUnresolved, is_thread_missing


class RetryingSender:
    """Delivers posts to a thread, recreating the thread once if it vanished."""

    def __init__(self, surface, registry):
        self.surface = surface
        self.registry = registry

    async def send(self, post, identifier=None, display_name=None, kind=None):
        try:
            return await self.surface.send(post)
        except Exception as exc:
            logging.warning("Failed to send message to topic %s: %s", post.thread_id, exc)
            if not (identifier and display_name and post.thread_id and is_thread_missing(exc)):
                raise
            logging.info("Recreating topic for %s...", identifier)
            self.registry.invalidate(identifier)
            new_thread_id = await self.registry.get_or_create(identifier, display_name, kind)
            if new_thread_id is None:
                raise RegistryUnresolved(f"Could not recreate topic for {identifier}") from exc
        post.thread_id = new_thread_id
        post.reply_to = None
        try:
            return await self.surface.send(post)
        except Exception as exc:
            logging.error("Failed to send message even after topic recreation: %s", exc)
            raise
