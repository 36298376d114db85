"""
WhatsApp Command Bot - Bot

The WhatsAppBot owns every part of the running bot: settings, session,
command registry, permission store, dispatcher and plugin manager. Plugins
never see it directly; each gets a BotHandle bound to its own name.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from wabot.cache import ReplyDeduplicator
from wabot.config import BotSettings
from wabot.dispatcher import Dispatcher, DispatchResult
from wabot.messages import MessageContext
from wabot.permissions import is_owner
from wabot.plugins.plugin_manager import LoadReport, PluginManager
from wabot.plugins.registry import Command, CommandRegistry, Handler
from wabot.session import BridgeSession, Content, SessionError, WhatsAppSession
from wabot.storage.permission_store import PermissionStore, create_permission_store

logger = logging.getLogger(__name__)


class BotHandle:
    """
    Facade given to plugins.

    Commands registered through a handle are tagged with the handle's plugin
    name and go into the registry the handle was built for (the staging
    registry while a load is in progress).
    """

    def __init__(self, bot: "WhatsAppBot", plugin_name: Optional[str], registry: CommandRegistry):
        self._bot = bot
        self.plugin_name = plugin_name
        self._registry = registry

    @property
    def prefix(self) -> str:
        return self._bot.settings.prefix

    @property
    def settings(self) -> BotSettings:
        return self._bot.settings

    @property
    def permissions(self) -> PermissionStore:
        return self._bot.store

    @property
    def started_at(self) -> float:
        return self._bot.started_at

    @property
    def bot_jid(self) -> Optional[str]:
        return self._bot.session.bot_jid

    async def send(
        self, chat_id: str, content: Content, quoted: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Send a message to a chat."""
        return await self._bot.send(chat_id, content, quoted=quoted)

    async def reply(self, context: MessageContext, content: Content) -> Optional[Dict[str, Any]]:
        """Reply in the chat of the given message, quoting it."""
        return await self._bot.send(context.chat_id, content, quoted=context.raw_message)

    def register_command(self, name: str, handler: Handler, **metadata: Any) -> Command:
        """Register a command owned by this handle's plugin."""
        metadata["plugin"] = self.plugin_name
        return self._registry.register(name, handler, **metadata)

    def commands(self) -> List[Command]:
        """Commands currently live, in registration order."""
        return self._bot.registry.list()

    def get_command(self, name: str) -> Optional[Command]:
        return self._bot.registry.get(name)

    def is_owner(self, context: MessageContext) -> bool:
        return is_owner(context, self._bot.settings.owner_numbers)

    def stats(self) -> Dict[str, Any]:
        return self._bot.stats()

    async def reload_plugins(self) -> LoadReport:
        return await self._bot.reload_plugins()

    def plugin_status(self) -> Dict[str, Dict[str, Any]]:
        return self._bot.plugin_manager.get_plugin_status()


class WhatsAppBot:
    """The running bot."""

    def __init__(
        self,
        settings: Optional[BotSettings] = None,
        session: Optional[WhatsAppSession] = None,
        store: Optional[PermissionStore] = None,
    ):
        self.settings = settings or BotSettings()
        self.session = session or BridgeSession(
            self.settings.bridge_url,
            token=self.settings.bridge_token,
            timeout=self.settings.send_timeout,
            max_attempts=self.settings.send_max_attempts,
        )
        self.store = store if store is not None else create_permission_store(self.settings)
        self.registry = CommandRegistry(prefix=self.settings.prefix)
        self.dedupe = ReplyDeduplicator(self.settings.reply_dedupe_seconds)
        self.started_at = time.time()

        # Handle used by the bot itself for error replies
        self.system_handle = BotHandle(self, None, self.registry)
        self.dispatcher = Dispatcher(
            self.registry, self.store, self.settings, responder=self.system_handle
        )
        self.plugin_manager = PluginManager(
            self.registry,
            self.create_handle,
            plugin_packages=self.settings.plugin_packages,
        )
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    def create_handle(self, plugin_name: str, registry: CommandRegistry) -> BotHandle:
        return BotHandle(self, plugin_name, registry)

    async def start(self, plugin_sources: Optional[List[Any]] = None) -> LoadReport:
        """
        Load permissions and plugins.

        Raises:
            PermissionStoreIOError: If the permission store cannot be read
        """
        logger.info(f"🚀 Starting {self.settings.bot_name}...")

        if not self.store.is_loaded:
            await asyncio.to_thread(self.store.load)

        fetch_bot_jid = getattr(self.session, "fetch_bot_jid", None)
        if not self.session.bot_jid and callable(fetch_bot_jid):
            await asyncio.to_thread(fetch_bot_jid)
        self.dispatcher.bot_jid = self.session.bot_jid

        report = await self.load_plugins(plugin_sources)
        self._started = True
        logger.info(f"✅ {self.settings.bot_name} is ready (prefix {self.settings.prefix!r})")
        return report

    async def load_plugins(self, plugin_sources: Optional[List[Any]] = None) -> LoadReport:
        report = await self.plugin_manager.load_all(plugin_sources)
        for failure in report.failed:
            logger.warning(f"⚠️ Plugin {failure.name} not loaded: {failure.error}")
        return report

    async def reload_plugins(self) -> LoadReport:
        return await self.plugin_manager.reload()

    async def handle_event(self, raw_event: Any) -> DispatchResult:
        """Dispatch one inbound event and wait for the result."""
        return await self.dispatcher.dispatch(raw_event)

    def submit_event(self, raw_event: Any) -> asyncio.Task:
        """Schedule an inbound event without waiting for it."""
        return self.dispatcher.submit(raw_event)

    async def send(
        self, chat_id: str, content: Content, quoted: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Send a message through the session.

        Identical text sent to the same chat within the dedupe window is
        dropped and None is returned.

        Raises:
            SessionError: If the session could not deliver the message
        """
        is_text = isinstance(content, str)
        if is_text and self.dedupe.is_duplicate(chat_id, content):
            return None

        try:
            result = await self.session.send_message(chat_id, content, quoted=quoted)
        except SessionError as e:
            logger.error(f"❌ Failed to send message to {chat_id}: {e}")
            raise

        if is_text:
            self.dedupe.record(chat_id, content)
        return result

    def stats(self) -> Dict[str, Any]:
        snapshot = self.dispatcher.stats_snapshot()
        snapshot["uptime_seconds"] = int(time.time() - self.started_at)
        snapshot["plugins_loaded"] = sum(
            1 for record in self.plugin_manager.plugins.values() if record.enabled
        )
        return snapshot

    async def shutdown(self) -> None:
        """Finish in-flight commands, stop plugins, close the session and the store."""
        logger.info("🔄 Shutting down bot...")
        await self.dispatcher.drain()
        await self.plugin_manager.shutdown_all_plugins()
        await self.session.close()
        await asyncio.to_thread(self.store.close)
        self._started = False
        logger.info("✅ Bot shutdown complete")
