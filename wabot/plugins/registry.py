"""
WhatsApp Command Bot - Command Registry

Maps command names to their handlers and metadata. The table is copy-on-write:
every mutation builds a new dict and publishes it with a single assignment, so
a dispatch running concurrently with a reload never observes a half-built
table.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class Command:
    """A registered command. Immutable once created."""

    name: str
    handler: Handler
    description: str = "No description"
    usage: str = ""
    category: str = "general"
    owner_only: bool = False
    group_only: bool = False
    private_only: bool = False
    grant_required: bool = False
    plugin: Optional[str] = None

    @property
    def is_restricted(self) -> bool:
        """True when non-owners need more than a matching chat type."""
        return self.owner_only or self.grant_required


class CommandRegistry:
    """
    Registry of commands keyed by lower-cased name.

    Re-registering an existing name replaces the previous command (last
    writer wins); the replacement is logged as a warning.
    """

    def __init__(self, prefix: str = "."):
        self.prefix = prefix
        self._commands: Mapping[str, Command] = MappingProxyType({})

    def register(self, name: str, handler: Handler, **metadata: Any) -> Command:
        """
        Register a command.

        Args:
            name: Command name, matched case-insensitively
            handler: Callable invoked with the MessageContext
            **metadata: description, usage, category, owner_only, group_only,
                private_only, grant_required, plugin

        Returns:
            The stored Command
        """
        key = (name or "").strip().lower()
        if not key or any(ch.isspace() for ch in key):
            raise ValueError(f"Invalid command name: {name!r}")
        if not callable(handler):
            raise TypeError(f"Handler for command {key!r} is not callable")

        metadata.setdefault("usage", f"{self.prefix}{key}")
        command = Command(name=key, handler=handler, **metadata)

        commands = dict(self._commands)
        previous = commands.get(key)
        if previous is not None:
            logger.warning(
                f"Command {key} from plugin {previous.plugin} overridden by plugin {command.plugin}"
            )
        commands[key] = command
        self._commands = MappingProxyType(commands)

        logger.debug(f"📝 Registered command: {key}")
        return command

    def get(self, name: str) -> Optional[Command]:
        """Look up a command by name (case-insensitive)."""
        if not name:
            return None
        return self._commands.get(name.lower())

    def list(self) -> List[Command]:
        """All commands in registration order."""
        return list(self._commands.values())

    def names(self) -> List[str]:
        return list(self._commands.keys())

    def unregister_all(self) -> None:
        """Drop every command in one step."""
        self._commands = MappingProxyType({})
        logger.info("🗑️ Command registry cleared")

    def unregister_plugin(self, plugin: str) -> int:
        """
        Remove all commands registered by one plugin.

        Returns:
            Number of commands removed
        """
        commands = {
            name: command
            for name, command in self._commands.items()
            if command.plugin != plugin
        }
        removed = len(self._commands) - len(commands)
        self._commands = MappingProxyType(commands)
        if removed:
            logger.info(f"🗑️ Removed {removed} commands from plugin: {plugin}")
        return removed

    def replace_with(self, other: "CommandRegistry") -> None:
        """Publish another registry's table as this registry's contents."""
        self._commands = other._commands

    def snapshot(self) -> Mapping[str, Command]:
        """Read-only view of the current table."""
        return self._commands

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._commands
