"""
WhatsApp Command Bot - Maintenance Plugin

Owner commands to reload plugins and inspect what is loaded.
"""

import logging

from wabot.messages import MessageContext
from wabot.plugins.base_plugin import BasePlugin, PluginMetadata

logger = logging.getLogger(__name__)


class MaintenancePlugin(BasePlugin):
    """Plugin for plugin maintenance commands."""

    @property
    def metadata(self) -> PluginMetadata:
        return PluginMetadata(
            name="Maintenance",
            version="1.0.0",
            description="Reload plugins and show plugin status",
            dependencies=[],
        )

    async def initialize(self, bot) -> bool:
        logger.info("Initializing Maintenance Plugin...")

        bot.register_command(
            "reload", self.reload_command,
            description="Reload all plugins",
            category="admin",
            owner_only=True,
        )
        bot.register_command(
            "plugins", self.plugins_command,
            description="Show loaded plugins",
            category="admin",
            owner_only=True,
        )
        return True

    async def reload_command(self, context: MessageContext) -> None:
        """Handle .reload."""
        await self.bot.reply(context, "🔄 Reloading plugins...")

        report = await self.bot.reload_plugins()
        text = f"✅ Reload complete: {report.summary()}, {len(self.bot.commands())} commands"
        if report.failed:
            text += "\n\n*Failed:*\n"
            text += "\n".join(f"• {failure.name}" for failure in report.failed)

        await self.bot.reply(context, text)

    async def plugins_command(self, context: MessageContext) -> None:
        """Handle .plugins."""
        status = self.bot.plugin_status()
        if not status:
            await self.bot.reply(context, "📦 No plugins loaded.")
            return

        text = "*📦 PLUGINS*\n\n"
        for name, info in sorted(status.items()):
            icon = "🟢" if info["enabled"] else "🔴"
            text += f"{icon} *{name}* v{info['version']} - {info['commands']} commands\n"
            if info.get("error"):
                text += "   ⚠️ failed to load\n"

        await self.bot.reply(context, text.strip())
