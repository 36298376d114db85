"""
WhatsApp Command Bot - Session

Outbound side of the WhatsApp session. The session itself (pairing, keys,
the Web protocol) lives in an external bridge process; the bot only needs
one primitive from it: send a message to a chat.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

import requests

from wabot.services.retry_service import RetryError, get_bridge_retry_service

logger = logging.getLogger(__name__)

Content = Union[str, Dict[str, Any]]


class SessionError(Exception):
    """Raised when a message cannot be handed to the WhatsApp session."""

    pass


def build_payload(chat_id: str, content: Content, quoted: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Build the bridge send payload.

    Plain strings become text messages; dicts (image, video, document,
    sticker...) are forwarded as they are.
    """
    if isinstance(content, str):
        content = {"text": content}
    elif not isinstance(content, dict):
        raise SessionError(f"Unsupported message content type: {type(content).__name__}")

    payload: Dict[str, Any] = {"jid": chat_id, "content": content}
    if quoted:
        payload["quoted"] = quoted
    return payload


class WhatsAppSession(ABC):
    """Interface of the outbound session collaborator."""

    # JID of the account the bot runs as, when the session knows it
    bot_jid: Optional[str] = None

    @abstractmethod
    async def send_message(
        self, chat_id: str, content: Content, quoted: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Send content to a chat. Returns the sent message info if any."""
        ...

    async def close(self) -> None:
        """Release resources."""
        pass


class BridgeSession(WhatsAppSession):
    """
    Sends messages through the bridge's HTTP API.

    POST {bridge_url}/send with {"jid", "content", "quoted"?}. Connection
    errors and timeouts are retried with backoff; HTTP errors are not.
    """

    def __init__(
        self,
        bridge_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        max_attempts: int = 3,
        bot_jid: Optional[str] = None,
    ):
        self.bridge_url = bridge_url.rstrip("/")
        self.timeout = timeout
        self.bot_jid = bot_jid
        self._http = requests.Session()
        if token:
            self._http.headers["Authorization"] = f"Bearer {token}"
        self._retry = get_bridge_retry_service(max_attempts=max_attempts)

    def _post(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        response = self._http.post(
            f"{self.bridge_url}/send", json=payload, timeout=self.timeout
        )
        response.raise_for_status()
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def _post_async(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._post, payload)

    async def send_message(
        self, chat_id: str, content: Content, quoted: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        payload = build_payload(chat_id, content, quoted)
        try:
            result = await self._retry.execute_async(self._post_async, payload)
        except RetryError as e:
            raise SessionError(
                f"Bridge unreachable after {e.attempts} attempts: {e.last_exception}"
            ) from e.last_exception
        except requests.RequestException as e:
            raise SessionError(f"Bridge rejected message for {chat_id}: {e}") from e

        logger.debug(f"📤 Message sent to {chat_id}")
        return result

    def fetch_bot_jid(self) -> Optional[str]:
        """Ask the bridge which account it is logged in as."""
        try:
            response = self._http.get(f"{self.bridge_url}/me", timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            if isinstance(data, dict):
                self.bot_jid = data.get("jid") or self.bot_jid
            else:
                logger.warning(f"Unexpected /me response from bridge: {type(data).__name__}")
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Could not fetch bot JID from bridge: {e}")
        return self.bot_jid

    async def close(self) -> None:
        self._http.close()
