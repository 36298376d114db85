"""
WhatsApp Command Bot - Dispatcher

Routes one inbound event to at most one command handler: normalize, parse
the prefix and command word, look the command up, check permissions, run the
handler under a timeout. Every expected outcome comes back as a
DispatchResult; a failing handler never escapes the dispatcher.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set, Tuple

from wabot import permissions
from wabot.messages import NON_COMMAND_KINDS, MessageContext, normalize_event
from wabot.plugins.registry import Command, CommandRegistry
from wabot.services.error_service import ErrorService, ErrorType

logger = logging.getLogger(__name__)


class DispatchOutcome(Enum):
    IGNORED = "ignored"
    NOT_A_COMMAND = "not_a_command"
    UNKNOWN_COMMAND = "unknown_command"
    DENIED = "denied"
    EXECUTED = "executed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class DispatchError(Exception):
    """Base class for errors reported by the dispatcher."""

    def __init__(self, message: str, command: Optional[str] = None):
        super().__init__(message)
        self.command = command


class UnknownCommandError(DispatchError):
    """The prefix was used with a name that is not registered."""

    def __init__(self, command: str):
        super().__init__(f"Unknown command: {command}", command)


class PermissionDeniedError(DispatchError):
    """The caller may not run the command."""

    def __init__(self, command: str, rule: permissions.PermissionRule):
        super().__init__(f"Permission denied for {command} ({rule.value})", command)
        self.rule = rule


class HandlerExecutionError(DispatchError):
    """A command handler raised."""

    def __init__(self, command: Optional[str], plugin: Optional[str], error: BaseException):
        super().__init__(f"Handler for {command} (plugin {plugin}) failed: {error}", command)
        self.plugin = plugin
        self.__cause__ = error


class HandlerTimeoutError(DispatchError):
    """A command handler ran past the configured timeout."""

    def __init__(self, command: str, plugin: Optional[str], timeout: float):
        super().__init__(f"Handler for {command} (plugin {plugin}) timed out after {timeout}s", command)
        self.plugin = plugin
        self.timeout = timeout


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    args: Tuple[str, ...]
    arg_text: str


def parse_command(text: Optional[str], prefix: str) -> Optional[ParsedCommand]:
    """
    Split "<prefix><command> <args...>" into its parts.

    Whitespace between the prefix and the command word is skipped. The
    command word is lower-cased; args keep their case and any prefix
    characters they contain.

    Returns:
        ParsedCommand, or None if the text is not a command
    """
    if not text or not prefix:
        return None

    text = text.strip()
    if not text.startswith(prefix):
        return None

    body = text[len(prefix):].lstrip()
    if not body:
        return None

    parts = body.split(None, 1)
    name = parts[0].lower()
    arg_text = parts[1].strip() if len(parts) > 1 else ""
    return ParsedCommand(name=name, args=tuple(arg_text.split()), arg_text=arg_text)


@dataclass
class DispatchResult:
    """Outcome of dispatching one event."""

    outcome: DispatchOutcome
    context: Optional[MessageContext] = None
    command: Optional[Command] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.outcome == DispatchOutcome.EXECUTED


@dataclass
class BotStats:
    """Process-wide dispatch counters."""

    messages_received: int = 0
    commands_executed: int = 0
    commands_denied: int = 0
    unknown_commands: int = 0
    errors: int = 0
    timeouts: int = 0

    def increment(self, counter: str) -> None:
        setattr(self, counter, getattr(self, counter) + 1)

    def as_dict(self) -> Dict[str, int]:
        return {
            "messages_received": self.messages_received,
            "commands_executed": self.commands_executed,
            "commands_denied": self.commands_denied,
            "unknown_commands": self.unknown_commands,
            "errors": self.errors,
            "timeouts": self.timeouts,
        }


class Dispatcher:
    """
    Dispatches inbound events to registered commands.

    Args:
        registry: Live command registry
        store: Permission store consulted for grants
        settings: BotSettings (prefix, owners, public mode, timeout...)
        responder: Object with async reply(context, content) and a prefix,
            used for generic failure replies; None keeps failures silent
    """

    def __init__(self, registry: CommandRegistry, store, settings, responder=None):
        self.registry = registry
        self.store = store
        self.settings = settings
        self.responder = responder
        self.bot_jid: Optional[str] = None
        self.stats = BotStats()
        self._tasks: Set[asyncio.Task] = set()

    async def dispatch(self, raw_event: Any) -> DispatchResult:
        """Dispatch one raw event. Never raises."""
        try:
            return await self._dispatch(raw_event)
        except Exception as e:
            self.stats.increment("errors")
            logger.error(f"Unexpected dispatch failure: {e}", exc_info=True)
            return DispatchResult(DispatchOutcome.FAILED, error=e)

    async def _dispatch(self, raw_event: Any) -> DispatchResult:
        context = normalize_event(raw_event, self.bot_jid)
        if context is None:
            logger.debug("Ignoring event without message payload")
            return DispatchResult(DispatchOutcome.IGNORED)

        self.stats.increment("messages_received")

        if context.kind in NON_COMMAND_KINDS or not context.text:
            return DispatchResult(DispatchOutcome.IGNORED, context=context)

        parsed = parse_command(context.text, self.settings.prefix)
        if parsed is None:
            return DispatchResult(DispatchOutcome.NOT_A_COMMAND, context=context)

        context = context.with_command(parsed.name, parsed.args, parsed.arg_text)
        logger.info(f"📨 Command {parsed.name} from {context.sender_id} in {context.chat_id}")

        command = self.registry.get(parsed.name)
        if command is None:
            return await self._unknown(context, parsed.name)

        decision = permissions.evaluate(
            command,
            context,
            self.store,
            self.settings.owner_numbers,
            self.settings.public_mode,
        )
        if not decision:
            self.stats.increment("commands_denied")
            error = PermissionDeniedError(command.name, decision.rule)
            ErrorService.log_error(
                ErrorType.PERMISSION_ERROR,
                error,
                command=command.name,
                plugin=command.plugin,
                user_id=context.sender_id,
            )
            return DispatchResult(DispatchOutcome.DENIED, context, command, error)

        return await self._execute(command, context)

    async def _unknown(self, context: MessageContext, name: str) -> DispatchResult:
        self.stats.increment("unknown_commands")
        error = UnknownCommandError(name)
        await ErrorService.handle_error(
            self.responder,
            context,
            ErrorType.UNKNOWN_COMMAND,
            error,
            command=name,
            notify_user=self.settings.unknown_command_reply,
        )
        return DispatchResult(DispatchOutcome.UNKNOWN_COMMAND, context, error=error)

    async def _execute(self, command: Command, context: MessageContext) -> DispatchResult:
        timeout = self.settings.handler_timeout
        task = asyncio.ensure_future(self._invoke(command, context))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if not done:
            # Only this deadline counts as a timeout; a TimeoutError raised
            # inside the handler is a handler failure
            task.cancel()
            self.stats.increment("timeouts")
            error = HandlerTimeoutError(command.name, command.plugin, timeout)
            await ErrorService.handle_error(
                self.responder, context, ErrorType.TIMEOUT_ERROR, error,
                command=command.name, plugin=command.plugin,
            )
            return DispatchResult(DispatchOutcome.TIMED_OUT, context, command, error)

        if task.cancelled():
            handler_error: Optional[BaseException] = asyncio.CancelledError()
        else:
            handler_error = task.exception()

        if handler_error is not None:
            self.stats.increment("errors")
            error = HandlerExecutionError(command.name, command.plugin, handler_error)
            await ErrorService.handle_error(
                self.responder, context, ErrorType.COMMAND_ERROR, error,
                command=command.name, plugin=command.plugin,
            )
            return DispatchResult(DispatchOutcome.FAILED, context, command, error)

        self.stats.increment("commands_executed")
        logger.debug(f"✅ Command {command.name} completed")
        return DispatchResult(DispatchOutcome.EXECUTED, context, command)

    @staticmethod
    async def _invoke(command: Command, context: MessageContext) -> None:
        """
        Run a handler.

        Plain functions run in a worker thread so a blocking handler cannot
        stall the event loop or the other in-flight commands.
        """
        handler = command.handler
        if inspect.iscoroutinefunction(handler):
            result = handler(context)
        else:
            result = await asyncio.to_thread(handler, context)
        if inspect.isawaitable(result):
            await result

    def submit(self, raw_event: Any) -> asyncio.Task:
        """
        Schedule dispatch of an event as its own task.

        Must be called from the bot's event loop thread.
        """
        task = asyncio.get_running_loop().create_task(self.dispatch(raw_event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every submitted dispatch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stats_snapshot(self) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = self.stats.as_dict()
        snapshot["commands_registered"] = len(self.registry)
        snapshot["in_flight"] = self.in_flight
        return snapshot
