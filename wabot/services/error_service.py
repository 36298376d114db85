"""
WhatsApp Command Bot - Error Service

This service provides structured error handling with one generic user-facing
message per error category and proper logging for each. Internal details and
stack traces go to the log only, never to chat.
"""

import logging
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class ErrorType(Enum):
    """Different types of errors that can occur in the bot."""

    USER_ERROR = "user_error"  # Bad command input
    PERMISSION_ERROR = "permission_error"  # Caller not authorized
    UNKNOWN_COMMAND = "unknown_command"  # Prefix used with no matching command
    COMMAND_ERROR = "command_error"  # Handler raised
    TIMEOUT_ERROR = "timeout_error"  # Handler ran past HANDLER_TIMEOUT
    STORAGE_ERROR = "storage_error"  # Permission store read/write failed
    SYSTEM_ERROR = "system_error"  # Internal system errors


class ErrorService:
    """Service for handling errors with user-friendly messages."""

    ERROR_MESSAGES: Dict[ErrorType, str] = {
        ErrorType.USER_ERROR: "❌ Invalid input. Check the command usage and try again.",
        ErrorType.PERMISSION_ERROR: "🚫 You are not authorized to use this command.",
        ErrorType.UNKNOWN_COMMAND: "❓ Unknown command. Use {prefix}help to see available commands.",
        ErrorType.COMMAND_ERROR: "❌ An error occurred while executing the command.",
        ErrorType.TIMEOUT_ERROR: "⏳ The command took too long and was stopped.",
        ErrorType.STORAGE_ERROR: "🔧 Could not save the change. Please try again.",
        ErrorType.SYSTEM_ERROR: "⚠️ An unexpected error occurred.",
    }

    @classmethod
    def user_message(cls, error_type: ErrorType, prefix: str = ".") -> str:
        """The generic chat message for an error category."""
        return cls.ERROR_MESSAGES[error_type].format(prefix=prefix)

    @classmethod
    def log_error(
        cls,
        error_type: ErrorType,
        error: Optional[BaseException],
        command: Optional[str] = None,
        plugin: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Log an error at the level its category calls for."""
        error_msg = (
            f"[{error_type.value}] command={command} plugin={plugin} "
            f"user={user_id}: {error}"
        )

        if error_type in (ErrorType.COMMAND_ERROR, ErrorType.SYSTEM_ERROR, ErrorType.STORAGE_ERROR):
            exc_info = error if isinstance(error, BaseException) else False
            if exc_info and isinstance(error.__cause__, BaseException):
                exc_info = error.__cause__
            logger.error(error_msg, exc_info=exc_info)
        elif error_type == ErrorType.TIMEOUT_ERROR:
            logger.warning(error_msg)
        else:
            logger.info(error_msg)

    @classmethod
    async def handle_error(
        cls,
        bot,
        context,
        error_type: ErrorType,
        error: Optional[BaseException],
        command: Optional[str] = None,
        plugin: Optional[str] = None,
        notify_user: bool = True,
    ) -> None:
        """
        Log an error and optionally tell the user, with a generic message.

        Args:
            bot: BotHandle used to send the reply
            context: MessageContext the error belongs to
            error_type: Category of the error
            error: The exception
            command: Command name for attribution
            plugin: Plugin name for attribution
            notify_user: Send the category message to the chat
        """
        cls.log_error(
            error_type,
            error,
            command=command,
            plugin=plugin,
            user_id=getattr(context, "sender_id", None),
        )

        if not notify_user or bot is None or context is None:
            return

        try:
            await bot.reply(context, cls.user_message(error_type, bot.prefix))
        except Exception as notification_error:
            logger.error(f"Failed to send error notification: {notification_error}")
