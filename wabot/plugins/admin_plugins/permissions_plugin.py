"""
WhatsApp Command Bot - Permissions Plugin

Owner commands for granting and revoking command permissions, per user or
group-wide.
"""

import logging
from typing import Optional, Tuple

from wabot import bot_utils
from wabot.messages import MessageContext
from wabot.plugins.base_plugin import BasePlugin, PluginMetadata
from wabot.services.error_service import ErrorService, ErrorType
from wabot.storage.permission_store import PermissionStoreIOError

logger = logging.getLogger(__name__)


class PermissionsPlugin(BasePlugin):
    """Plugin for managing command permissions."""

    @property
    def metadata(self) -> PluginMetadata:
        return PluginMetadata(
            name="Permissions",
            version="1.0.0",
            description="Grant and revoke command permissions",
            dependencies=[],
        )

    async def initialize(self, bot) -> bool:
        """Register the permission management commands."""
        logger.info("Initializing Permissions Plugin...")

        usage = f"{bot.prefix}pm [allow|disallow|allowgroup|disallowgroup|clear] ..."
        for name in ("permissions", "pm"):
            bot.register_command(
                name, self.permissions_command,
                description="Manage command permissions",
                usage=usage,
                category="admin",
                owner_only=True,
            )
        return True

    def _usage(self) -> str:
        prefix = self.bot.prefix
        return (
            "❌ Usage:\n"
            f"• `{prefix}pm` - List all permissions\n"
            f"• `{prefix}pm <jid>` - List permissions of a user\n"
            f"• `{prefix}pm allow <command>` - Allow this chat, or the quoted user in a group\n"
            f"• `{prefix}pm allow <jid> <command>` - Allow a specific user\n"
            f"• `{prefix}pm disallow <command>` / `{prefix}pm disallow <jid> <command>`\n"
            f"• `{prefix}pm allowgroup <command>` - Allow everyone in this group\n"
            f"• `{prefix}pm disallowgroup <command>`\n"
            f"• `{prefix}pm clear <jid>` - Remove every permission of a user"
        )

    def _command_name(self, raw: str) -> str:
        name = raw.lower()
        if name.startswith(self.bot.prefix):
            name = name[len(self.bot.prefix):]
        return name

    def _resolve_target(self, context: MessageContext, args) -> Tuple[Optional[str], Optional[str]]:
        """
        Work out (target jid, command) for allow/disallow.

        With one argument the target is the current private chat, or in a
        group the author of the quoted message.
        """
        if len(args) >= 2:
            return bot_utils.normalize_jid(args[0]), self._command_name(args[1])

        command = self._command_name(args[0])
        if not context.is_group:
            return context.chat_id, command
        if context.quoted and context.quoted.participant_id:
            return context.quoted.participant_id, command
        return None, command

    async def permissions_command(self, context: MessageContext) -> None:
        """Handle .permissions / .pm."""
        args = context.args

        if not args:
            await self._list_all(context)
            return

        sub_command = args[0].lower()
        try:
            if sub_command in ("allow", "disallow"):
                await self._allow_or_disallow(context, sub_command == "allow", args[1:])
            elif sub_command in ("allowgroup", "disallowgroup"):
                await self._group_grant(context, sub_command == "allowgroup", args[1:])
            elif sub_command == "clear":
                await self._clear(context, args[1:])
            else:
                await self._list_user(context, bot_utils.normalize_jid(args[0]))
        except PermissionStoreIOError as e:
            await ErrorService.handle_error(
                self.bot, context, ErrorType.STORAGE_ERROR, e,
                command=context.command_name, plugin=self.name,
            )

    async def _list_all(self, context: MessageContext) -> None:
        all_permissions = self.bot.permissions.all()
        if not all_permissions:
            await self.bot.reply(context, "📋 No permissions set.")
            return

        prefix = self.bot.prefix
        text = "*📋 PERMISSIONS*\n"
        for identity, commands in sorted(all_permissions.items()):
            label = "group" if bot_utils.is_group_jid(identity) else "user"
            text += f"\n*{bot_utils.display_jid(identity)}* ({label})\n"
            text += "".join(f"• {prefix}{command}\n" for command in commands)

        await self.bot.reply(context, text.strip())

    async def _list_user(self, context: MessageContext, jid: str) -> None:
        commands = self.bot.permissions.get(jid)
        display = bot_utils.display_jid(jid)
        if not commands:
            await self.bot.reply(context, f"📋 User {display} has no permissions.")
            return

        prefix = self.bot.prefix
        text = f"*📋 PERMISSIONS FOR {display}*\n\n"
        text += "".join(f"• {prefix}{command}\n" for command in commands)
        await self.bot.reply(context, text.strip())

    async def _check_command(self, context: MessageContext, name: str) -> bool:
        command = self.bot.get_command(name)
        if command is None:
            await self.bot.reply(context, f'❌ Command "{name}" not found.')
            return False
        if command.owner_only:
            await self.bot.reply(
                context, f"⚠️ {self.bot.prefix}{name} is owner-only and cannot be granted."
            )
            return False
        return True

    async def _allow_or_disallow(self, context: MessageContext, allow: bool, args) -> None:
        if not args:
            await self.bot.reply(context, self._usage())
            return

        target, name = self._resolve_target(context, args)
        prefix = self.bot.prefix
        if target is None:
            action = "allow" if allow else "disallow"
            await self.bot.reply(
                context,
                "❌ In groups, reply to a message to pick the user.\n\n"
                f"Usage: Reply to someone's message, then use `{prefix}pm {action} {name}`",
            )
            return

        display = bot_utils.display_jid(target)
        if allow:
            if not await self._check_command(context, name):
                return
            if await self.bot.permissions.add(target, name):
                await self.bot.reply(context, f"✅ User {display} can now use {prefix}{name}")
            else:
                await self.bot.reply(context, f"ℹ️ User {display} already has {prefix}{name}")
        else:
            if await self.bot.permissions.remove(target, name):
                await self.bot.reply(context, f"✅ Removed {prefix}{name} permission from {display}")
            else:
                await self.bot.reply(context, f"ℹ️ User {display} does not have {prefix}{name}")

    async def _group_grant(self, context: MessageContext, allow: bool, args) -> None:
        if not args:
            await self.bot.reply(context, self._usage())
            return
        if not context.is_group:
            await self.bot.reply(context, "❌ Group permissions can only be managed inside a group.")
            return

        name = self._command_name(args[0])
        prefix = self.bot.prefix
        if allow:
            if not await self._check_command(context, name):
                return
            if await self.bot.permissions.add(context.chat_id, name):
                await self.bot.reply(context, f"✅ Everyone in this group can now use {prefix}{name}")
            else:
                await self.bot.reply(context, f"ℹ️ This group already has {prefix}{name}")
        else:
            if await self.bot.permissions.remove(context.chat_id, name):
                await self.bot.reply(context, f"✅ Removed {prefix}{name} from this group")
            else:
                await self.bot.reply(context, f"ℹ️ This group does not have {prefix}{name}")

    async def _clear(self, context: MessageContext, args) -> None:
        if not args:
            await self.bot.reply(context, self._usage())
            return

        jid = bot_utils.normalize_jid(args[0])
        display = bot_utils.display_jid(jid)
        if await self.bot.permissions.remove_all(jid):
            await self.bot.reply(context, f"🗑️ Removed all permissions from {display}")
        else:
            await self.bot.reply(context, f"📋 User {display} has no permissions.")
