"""
WhatsApp Command Bot - Permission Evaluator

Decides whether a command may run for a given message. Structural rules
(owner-only, group-only, private-only) are checked before stored grants, so a
grant can widen who may run a command but can never lift a hard restriction.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from wabot import bot_utils
from wabot.messages import MessageContext
from wabot.plugins.registry import Command

logger = logging.getLogger(__name__)


class PermissionRule(Enum):
    """The rule that produced a decision."""

    OWNER = "owner"
    OWNER_ONLY = "owner_only"
    GROUP_ONLY = "group_only"
    PRIVATE_ONLY = "private_only"
    USER_GRANT = "user_grant"
    GROUP_GRANT = "group_grant"
    PUBLIC = "public"
    NO_GRANT = "no_grant"


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    rule: PermissionRule

    def __bool__(self) -> bool:
        return self.allowed


def is_owner(context: MessageContext, owner_numbers: Iterable[str]) -> bool:
    """
    Check if the message comes from the bot owner.

    Messages sent from the bot's own account count as owner messages.
    """
    if context.from_me:
        return True
    return bot_utils.matches_number(context.sender_id, owner_numbers)


def _has_grant(store, identity: Optional[str], command_name: str) -> bool:
    if store is None or not identity:
        return False
    try:
        return store.has(identity, command_name)
    except Exception as e:
        logger.error(f"Permission lookup failed for {identity}: {e}")
        return False


def evaluate(
    command: Command,
    context: MessageContext,
    store,
    owner_numbers: Iterable[str],
    public_mode: bool = True,
) -> PermissionDecision:
    """
    Evaluate the permission rules in order; the first matching rule wins.

    Args:
        command: The resolved command
        context: The message that invoked it
        store: Permission store (anything with has(identity, command))
        owner_numbers: Phone numbers of the bot owner(s)
        public_mode: When False, every command needs an explicit grant

    Returns:
        PermissionDecision with the verdict and the deciding rule
    """
    if is_owner(context, owner_numbers):
        return PermissionDecision(True, PermissionRule.OWNER)

    if command.owner_only:
        return PermissionDecision(False, PermissionRule.OWNER_ONLY)

    if command.group_only and not context.is_group:
        return PermissionDecision(False, PermissionRule.GROUP_ONLY)

    if command.private_only and context.is_group:
        return PermissionDecision(False, PermissionRule.PRIVATE_ONLY)

    if _has_grant(store, context.sender_id, command.name):
        return PermissionDecision(True, PermissionRule.USER_GRANT)

    if context.is_group and _has_grant(store, context.chat_id, command.name):
        return PermissionDecision(True, PermissionRule.GROUP_GRANT)

    if public_mode and not command.is_restricted:
        return PermissionDecision(True, PermissionRule.PUBLIC)

    return PermissionDecision(False, PermissionRule.NO_GRANT)


def can_execute(
    command: Command,
    context: MessageContext,
    store,
    owner_numbers: Iterable[str],
    public_mode: bool = True,
) -> bool:
    """Boolean form of evaluate()."""
    return evaluate(command, context, store, owner_numbers, public_mode).allowed
