"""
Shared test fixtures: raw bridge events, fake session and an in-memory
permission store.
"""

from typing import Any, Dict, List, Optional, Set

from wabot.config import BotSettings
from wabot.messages import MessageContext, normalize_event
from wabot.session import WhatsAppSession
from wabot.storage.permission_store import PermissionStore

OWNER = "2348000000001"
OWNER_JID = f"{OWNER}@s.whatsapp.net"
USER_JID = "2348000000002@s.whatsapp.net"
OTHER_JID = "2348000000003@s.whatsapp.net"
BOT_JID = "2348000000009@s.whatsapp.net"
GROUP_JID = "120363000000000001@g.us"


def make_event(
    text: str = "",
    chat: str = USER_JID,
    sender: Optional[str] = None,
    from_me: bool = False,
    message_id: str = "MSG1",
    quoted_participant: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a Baileys style inbound text event."""
    key = {"remoteJid": chat, "fromMe": from_me, "id": message_id}
    if sender and chat.endswith("@g.us"):
        key["participant"] = sender

    if quoted_participant:
        message = {
            "extendedTextMessage": {
                "text": text,
                "contextInfo": {
                    "stanzaId": "QUOTED1",
                    "participant": quoted_participant,
                    "quotedMessage": {"conversation": "earlier message"},
                },
            }
        }
    else:
        message = {"conversation": text}

    return {"key": key, "message": message, "messageTimestamp": 1700000000}


def make_context(text: str = "", **kwargs) -> MessageContext:
    return normalize_event(make_event(text, **kwargs), BOT_JID)


def make_settings(**overrides) -> BotSettings:
    values = dict(
        bot_name="TestBot",
        prefix=".",
        owner_numbers=[OWNER],
        public_mode=True,
        unknown_command_reply=False,
        handler_timeout=1.0,
        reply_dedupe_seconds=0,
        plugin_packages=[],
        database_url=None,
        bridge_url="http://bridge.test",
        timezone="UTC",
    )
    values.update(overrides)
    return BotSettings(**values)


class FakeSession(WhatsAppSession):
    """Session that records sent messages instead of sending them."""

    def __init__(self, bot_jid: Optional[str] = BOT_JID):
        self.bot_jid = bot_jid
        self.sent: List[tuple] = []
        self.closed = False

    async def send_message(self, chat_id, content, quoted=None):
        self.sent.append((chat_id, content, quoted))
        return {"key": {"id": f"SENT{len(self.sent)}"}}

    def texts(self) -> List[str]:
        return [
            content if isinstance(content, str) else content.get("text", "")
            for _, content, _ in self.sent
        ]

    async def close(self):
        self.closed = True


class MemoryPermissionStore(PermissionStore):
    """Permission store kept in memory; set fail_writes to simulate I/O errors."""

    def __init__(self, initial: Optional[Dict[str, Set[str]]] = None):
        super().__init__()
        self.initial = initial or {}
        self.writes: List[Dict[str, Set[str]]] = []
        self.fail_writes = False

    def _read(self):
        return {identity: set(commands) for identity, commands in self.initial.items()}

    def _write(self, permissions):
        if self.fail_writes:
            raise OSError("disk full")
        self.writes.append(permissions)
