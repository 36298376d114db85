"""
WhatsApp Command Bot - Message Normalization

Turns raw inbound events from the WhatsApp bridge into immutable
MessageContext records. The message kind is decided once here so handlers
never have to probe optional fields of the raw payload themselves.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from wabot import bot_utils

logger = logging.getLogger(__name__)


class MessageKind(Enum):
    """Kinds of inbound messages."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"
    STICKER = "sticker"
    REACTION = "reaction"
    PROTOCOL = "protocol"
    STATUS = "status"
    UNKNOWN = "unknown"


# Content node name -> message kind
CONTENT_KINDS: Dict[str, MessageKind] = {
    "conversation": MessageKind.TEXT,
    "extendedTextMessage": MessageKind.TEXT,
    "imageMessage": MessageKind.IMAGE,
    "videoMessage": MessageKind.VIDEO,
    "audioMessage": MessageKind.AUDIO,
    "documentMessage": MessageKind.DOCUMENT,
    "documentWithCaptionMessage": MessageKind.DOCUMENT,
    "stickerMessage": MessageKind.STICKER,
    "reactionMessage": MessageKind.REACTION,
    "protocolMessage": MessageKind.PROTOCOL,
}

# Envelope nodes that wrap the real content
WRAPPER_NODES = ("ephemeralMessage", "viewOnceMessage", "viewOnceMessageV2")

# Kinds that can never carry a command
NON_COMMAND_KINDS = {
    MessageKind.REACTION,
    MessageKind.PROTOCOL,
    MessageKind.STATUS,
    MessageKind.UNKNOWN,
}

# Bookkeeping nodes the bridge may send alongside the content node
IGNORED_NODES = {"messageContextInfo", "senderKeyDistributionMessage"}


@dataclass(frozen=True)
class QuotedMessage:
    """The message a reply refers to."""

    message_id: Optional[str]
    participant_id: Optional[str]
    text: str = ""


@dataclass(frozen=True)
class MessageContext:
    """Normalized, read-only view of one inbound event."""

    raw_message: Dict[str, Any]
    message_id: Optional[str]
    sender_id: str
    chat_id: str
    participant_id: str
    is_group: bool
    from_me: bool
    kind: MessageKind
    text: str
    timestamp: float
    quoted: Optional[QuotedMessage] = None
    command_name: Optional[str] = None
    args: Tuple[str, ...] = field(default_factory=tuple)
    arg_text: str = ""

    @property
    def key(self) -> Dict[str, Any]:
        """The raw message key, used to quote the message in replies."""
        return self.raw_message.get("key", {})

    @property
    def is_command(self) -> bool:
        return self.command_name is not None

    def with_command(self, command_name: str, args: Tuple[str, ...], arg_text: str) -> "MessageContext":
        """Return a copy carrying the parsed command."""
        return replace(self, command_name=command_name, args=tuple(args), arg_text=arg_text)


def _unwrap(message: Dict[str, Any]) -> Dict[str, Any]:
    """Strip ephemeral/view-once envelopes."""
    for _ in range(3):
        for wrapper in WRAPPER_NODES:
            inner = message.get(wrapper)
            if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
                message = inner["message"]
                break
        else:
            return message
    return message


def _content_node(message: Dict[str, Any]) -> Tuple[Optional[str], Any]:
    """Return the first meaningful content node of a message payload."""
    for node_type, content in message.items():
        if node_type in IGNORED_NODES:
            continue
        return node_type, content
    return None, None


def _extract_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        if isinstance(content.get("text"), str):
            return content["text"]
        if isinstance(content.get("caption"), str):
            return content["caption"]
        nested = content.get("message")
        if isinstance(nested, dict):
            _, inner = _content_node(nested)
            return _extract_text(inner)
    return ""


def _extract_quoted(content: Any) -> Optional[QuotedMessage]:
    if not isinstance(content, dict):
        return None
    context_info = content.get("contextInfo")
    if not isinstance(context_info, dict):
        return None
    quoted_message = context_info.get("quotedMessage")
    if not quoted_message and not context_info.get("stanzaId"):
        return None

    quoted_text = ""
    if isinstance(quoted_message, dict):
        _, quoted_content = _content_node(_unwrap(quoted_message))
        quoted_text = _extract_text(quoted_content)

    return QuotedMessage(
        message_id=context_info.get("stanzaId"),
        participant_id=context_info.get("participant"),
        text=quoted_text,
    )


def resolve_jids(key: Dict[str, Any], bot_jid: Optional[str] = None) -> Dict[str, Any]:
    """
    Work out chat, sender and participant JIDs from a message key.

    Business accounts addressed by LID are mapped back to their phone number
    JID when the bridge supplies it as "senderPn".
    """
    remote_jid = key.get("remoteJid") or ""
    from_me = bool(key.get("fromMe"))
    sender_pn = key.get("senderPn")
    is_business = bool(sender_pn) and bot_utils.is_business_jid(remote_jid)

    chat_id = sender_pn if is_business else remote_jid

    if from_me:
        sender_id = bot_jid or "unknown@s.whatsapp.net"
    elif is_business:
        sender_id = sender_pn
    elif bot_utils.is_group_jid(remote_jid) and key.get("participant"):
        sender_id = key["participant"]
    else:
        sender_id = remote_jid

    return {
        "chat_id": chat_id,
        "sender_id": sender_id,
        "is_group": bot_utils.is_group_jid(remote_jid),
        "is_business": is_business,
        "from_me": from_me,
    }


def normalize_event(raw_event: Any, bot_jid: Optional[str] = None) -> Optional[MessageContext]:
    """
    Normalize a raw bridge event into a MessageContext.

    Returns None for events that are not messages at all (missing key or
    payload). Reactions, protocol messages and status broadcasts are
    returned with their kind set so callers can skip them.
    """
    if not isinstance(raw_event, dict):
        return None

    key = raw_event.get("key")
    message = raw_event.get("message")
    if not isinstance(key, dict) or not key.get("remoteJid") or not isinstance(message, dict):
        return None

    jids = resolve_jids(key, bot_jid)
    message = _unwrap(message)
    node_type, content = _content_node(message)

    if bot_utils.is_status_jid(key.get("remoteJid")):
        kind = MessageKind.STATUS
    else:
        kind = CONTENT_KINDS.get(node_type, MessageKind.UNKNOWN)

    text = "" if kind in NON_COMMAND_KINDS else _extract_text(content)

    timestamp = raw_event.get("messageTimestamp")
    try:
        timestamp = float(timestamp) if timestamp is not None else time.time()
    except (TypeError, ValueError):
        timestamp = time.time()

    return MessageContext(
        raw_message=raw_event,
        message_id=key.get("id"),
        sender_id=jids["sender_id"],
        chat_id=jids["chat_id"],
        participant_id=jids["sender_id"],
        is_group=jids["is_group"],
        from_me=jids["from_me"],
        kind=kind,
        text=text,
        timestamp=timestamp,
        quoted=_extract_quoted(content),
    )
