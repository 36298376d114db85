"""
WhatsApp Command Bot - Core Utilities

This module contains reusable helpers used throughout the bot, mostly JID
(WhatsApp identifier) handling and small text formatting helpers for replies.
"""

import logging
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"
LID_SERVER = "lid"
STATUS_BROADCAST = "status@broadcast"


def normalize_jid(jid: Optional[str]) -> Optional[str]:
    """
    Normalize a JID or bare phone number to the standard user JID format.

    "2348012345678" becomes "2348012345678@s.whatsapp.net"; values that
    already carry a server part are returned unchanged.
    """
    if not jid:
        return None
    jid = jid.strip()
    if "@" not in jid:
        return f"{jid.lstrip('+')}@{USER_SERVER}"
    return jid


def jid_user(jid: Optional[str]) -> str:
    """Return the user part of a JID without device suffix ("123:4@s..." -> "123")."""
    if not jid:
        return ""
    return jid.split("@", 1)[0].split(":", 1)[0]


def is_group_jid(jid: Optional[str]) -> bool:
    """Check if JID is a group."""
    return bool(jid) and jid.endswith(f"@{GROUP_SERVER}")


def is_business_jid(jid: Optional[str]) -> bool:
    """Check if JID uses the LID addressing used by business/linked accounts."""
    return bool(jid) and jid.endswith(f"@{LID_SERVER}")


def is_status_jid(jid: Optional[str]) -> bool:
    """Check if JID is the status broadcast pseudo chat."""
    return jid == STATUS_BROADCAST


def matches_number(jid: Optional[str], numbers: Iterable[str]) -> bool:
    """
    Check whether a JID belongs to one of the given phone numbers.

    Matches the plain user JID, device-suffixed JIDs ("123:7@s.whatsapp.net")
    and LID forms ("123@lid").
    """
    if not jid:
        return False
    user = jid_user(jid)
    return any(number and user == number for number in numbers)


def display_jid(jid: Optional[str]) -> str:
    """Short form of a JID for chat output."""
    return jid_user(jid) or "unknown"


def format_uptime(seconds: float) -> str:
    """Format a duration in seconds as "1d 2h 3m 4s"."""
    seconds = int(max(seconds, 0))
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    parts.append(f"{seconds}s")
    return " ".join(parts)


def format_number(value: int) -> str:
    """Format an integer with thousands separators."""
    return f"{value:,}"
