"""
WhatsApp Command Bot - Core Commands Plugin

This plugin handles the most essential commands like .help, .ping, .jid,
.time and .status.
"""

import logging
import time
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List

import pytz

from wabot import bot_utils
from wabot.messages import MessageContext
from wabot.plugins.base_plugin import BasePlugin, PluginMetadata
from wabot.plugins.registry import Command

logger = logging.getLogger(__name__)


class CoreCommandsPlugin(BasePlugin):
    """Plugin for essential user commands."""

    @property
    def metadata(self) -> PluginMetadata:
        return PluginMetadata(
            name="CoreCommands",
            version="1.0.0",
            description="Essential commands like .help, .ping, .jid, .time, .status",
            dependencies=[],
        )

    async def initialize(self, bot) -> bool:
        """Register the core commands."""
        logger.info("Initializing Core Commands Plugin...")

        bot.register_command(
            "help", self.help_command,
            description="Show available commands or details for one command",
            usage=f"{bot.prefix}help [command]",
            category="core",
        )
        bot.register_command(
            "menu", self.help_command,
            description="Alias of help",
            usage=f"{bot.prefix}menu [command]",
            category="core",
        )
        bot.register_command(
            "ping", self.ping_command,
            description="Check if the bot is responsive",
            category="core",
        )
        bot.register_command(
            "jid", self.jid_command,
            description="Show the JID of this chat",
            category="core",
        )
        bot.register_command(
            "time", self.time_command,
            description="Show the current bot time",
            category="core",
        )
        bot.register_command(
            "status", self.status_command,
            description="Show bot status and statistics",
            category="core",
        )
        return True

    async def help_command(self, context: MessageContext) -> None:
        """Handle the .help command."""
        prefix = self.bot.prefix

        if context.args:
            name = context.args[0].lower()
            if name.startswith(prefix):
                name = name[len(prefix):]
            command = self.bot.get_command(name)
            if command is None:
                await self.bot.reply(context, f'❌ Command "{name}" not found.')
                return
            await self.bot.reply(context, self._format_command_help(command))
            return

        commands = self.bot.commands()
        categories: Dict[str, List[Command]] = OrderedDict()
        for command in commands:
            categories.setdefault(command.category, []).append(command)

        text = f"*🤖 {self.bot.settings.bot_name.upper()} COMMAND MENU*\n\n"
        for category, category_commands in categories.items():
            text += f"*{category.upper()}*\n"
            for command in category_commands:
                text += f"• {prefix}{command.name} - {command.description}\n"
            text += "\n"

        text += f"_Total Commands: {len(commands)}_\n"
        text += f"_Type {prefix}help <command> for detailed info_"

        await self.bot.reply(context, text)

    @staticmethod
    def _format_command_help(command: Command) -> str:
        lines = [
            f"*{command.name.upper()}*",
            "",
            f"📝 *Description:* {command.description}",
            f"💡 *Usage:* {command.usage}",
            f"📂 *Category:* {command.category}",
        ]
        if command.owner_only:
            lines.append("👑 *Owner Only*")
        if command.group_only:
            lines.append("👥 *Group Only*")
        if command.private_only:
            lines.append("💬 *Private Only*")
        return "\n".join(lines)

    async def ping_command(self, context: MessageContext) -> None:
        """Handle the .ping command."""
        # Measured from the message timestamp; whole seconds when the bridge set it
        latency_ms = max(int((time.time() - context.timestamp) * 1000), 0)
        await self.bot.reply(context, f"🏓 Pong! {latency_ms}ms")

    async def jid_command(self, context: MessageContext) -> None:
        """Handle the .jid command."""
        await self.bot.reply(context, context.chat_id)

    async def time_command(self, context: MessageContext) -> None:
        """Handle the .time command in the configured timezone."""
        timezone_name = self.bot.settings.timezone
        try:
            tz = pytz.timezone(timezone_name)
        except pytz.UnknownTimeZoneError:
            logger.warning(f"Unknown TIMEZONE {timezone_name!r}, falling back to UTC")
            tz = pytz.UTC

        now = datetime.now(pytz.UTC).astimezone(tz)
        await self.bot.reply(
            context,
            f"🕐 *Current Time*\n\n{now.strftime('%d/%m/%Y %H:%M:%S %Z')} ({tz.zone})",
        )

    async def status_command(self, context: MessageContext) -> None:
        """Handle the .status command."""
        stats = self.bot.stats()
        uptime = bot_utils.format_uptime(time.time() - self.bot.started_at)

        text = (
            f"*🤖 {self.bot.settings.bot_name.upper()} STATUS*\n\n"
            f"🟢 *Status:* Online\n"
            f"⏰ *Uptime:* {uptime}\n"
            f"📨 *Messages Received:* {bot_utils.format_number(stats['messages_received'])}\n"
            f"⚡ *Commands Executed:* {bot_utils.format_number(stats['commands_executed'])}\n"
            f"🚫 *Commands Denied:* {bot_utils.format_number(stats['commands_denied'])}\n"
            f"❌ *Errors:* {bot_utils.format_number(stats['errors'] + stats['timeouts'])}\n"
            f"📦 *Commands Loaded:* {stats['commands_registered']}\n"
            f"🔌 *Plugins Loaded:* {stats['plugins_loaded']}"
        )
        await self.bot.reply(context, text)
