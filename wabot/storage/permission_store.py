"""
WhatsApp Command Bot - Permission Store

Durable mapping of identity -> granted command names. An identity is either a
user JID (per-user grant) or a group JID (group-wide grant). Data is loaded
once, served from memory, and written back on every mutation. A mutation only
becomes visible after it has been persisted, so a failed write never leaves
memory and storage disagreeing.
"""

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

from psycopg2.extras import execute_values

from wabot.storage.database import Database

logger = logging.getLogger(__name__)


class PermissionStoreIOError(Exception):
    """Raised when permission data cannot be read or written."""

    pass


class PermissionStore(ABC):
    """Base class for permission stores."""

    def __init__(self):
        self._permissions: Dict[str, Set[str]] = {}
        self._write_lock = asyncio.Lock()
        self._loaded = False

    @abstractmethod
    def _read(self) -> Dict[str, Set[str]]:
        """Read all permissions from durable storage."""
        pass

    @abstractmethod
    def _write(self, permissions: Dict[str, Set[str]]) -> None:
        """Write all permissions to durable storage."""
        pass

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self) -> None:
        """Load permissions from storage into memory."""
        try:
            self._permissions = self._read()
        except PermissionStoreIOError:
            raise
        except Exception as e:
            raise PermissionStoreIOError(f"Failed to load permissions: {e}") from e
        self._loaded = True
        logger.info(f"🔐 Loaded permissions for {len(self._permissions)} identities")

    def has(self, identity: Optional[str], command: str) -> bool:
        """Check if an identity was granted a command."""
        if not identity:
            return False
        return command.lower() in self._permissions.get(identity, ())

    def get(self, identity: str) -> List[str]:
        """Commands granted to one identity, sorted."""
        return sorted(self._permissions.get(identity, ()))

    def all(self) -> Dict[str, List[str]]:
        """Every identity with its granted commands."""
        return {identity: sorted(commands) for identity, commands in self._permissions.items()}

    async def add(self, identity: str, command: str) -> bool:
        """
        Grant a command to an identity.

        Returns:
            False if the grant already existed

        Raises:
            PermissionStoreIOError: If the change could not be persisted
        """
        command = command.lower()
        async with self._write_lock:
            if command in self._permissions.get(identity, ()):
                return False
            updated = self._copy()
            updated.setdefault(identity, set()).add(command)
            await self._commit(updated)

        logger.info(f"✅ Permission added: {identity} can now use {command}")
        return True

    async def remove(self, identity: str, command: str) -> bool:
        """
        Revoke a command from an identity.

        Returns:
            False if there was nothing to revoke
        """
        command = command.lower()
        async with self._write_lock:
            if command not in self._permissions.get(identity, ()):
                return False
            updated = self._copy()
            updated[identity].discard(command)
            if not updated[identity]:
                del updated[identity]
            await self._commit(updated)

        logger.info(f"❌ Permission removed: {identity} can no longer use {command}")
        return True

    async def remove_all(self, identity: str) -> bool:
        """Revoke every grant of an identity."""
        async with self._write_lock:
            if identity not in self._permissions:
                return False
            updated = self._copy()
            del updated[identity]
            await self._commit(updated)

        logger.info(f"🗑️ All permissions removed for: {identity}")
        return True

    def close(self) -> None:
        """Release backend resources. Nothing to do for file storage."""
        pass

    def _copy(self) -> Dict[str, Set[str]]:
        return {identity: set(commands) for identity, commands in self._permissions.items()}

    async def _commit(self, updated: Dict[str, Set[str]]) -> None:
        try:
            await asyncio.to_thread(self._write, updated)
        except Exception as e:
            logger.error(f"Failed to persist permissions: {e}")
            raise PermissionStoreIOError(f"Failed to persist permissions: {e}") from e
        self._permissions = updated


class JsonPermissionStore(PermissionStore):
    """Permissions kept in a JSON file: {"<jid>": ["cmd", ...]}."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path

    def _read(self) -> Dict[str, Set[str]]:
        if not os.path.exists(self.path):
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PermissionStoreIOError(f"Cannot read {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise PermissionStoreIOError(f"{self.path} must contain a JSON object")

        return {
            identity: {str(command).lower() for command in commands}
            for identity, commands in data.items()
            if isinstance(commands, list) and commands
        }

    def _write(self, permissions: Dict[str, Set[str]]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        data = {identity: sorted(commands) for identity, commands in permissions.items()}
        # Write to a temp file and rename so readers never see a torn file
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class PostgresPermissionStore(PermissionStore):
    """Permissions kept in the command_permissions table."""

    def __init__(self, database: Database):
        super().__init__()
        self.database = database

    def close(self) -> None:
        self.database.close_connection_pool()

    def _read(self) -> Dict[str, Set[str]]:
        self.database.ensure_schema()
        rows = self.database.execute_query(
            "SELECT identity, command FROM command_permissions ORDER BY identity",
            fetch_all=True,
        )
        permissions: Dict[str, Set[str]] = {}
        for row in rows or []:
            permissions.setdefault(row["identity"], set()).add(row["command"])
        return permissions

    def _write(self, permissions: Dict[str, Set[str]]) -> None:
        rows = [
            (identity, command)
            for identity, commands in permissions.items()
            for command in sorted(commands)
        ]
        with self.database.get_db_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("DELETE FROM command_permissions")
                if rows:
                    execute_values(
                        cursor,
                        "INSERT INTO command_permissions (identity, command) VALUES %s",
                        rows,
                    )


def create_permission_store(settings) -> PermissionStore:
    """Pick the store backend from settings: PostgreSQL if configured, else JSON."""
    if settings.database_url:
        logger.info("🗄️ Using PostgreSQL permission store")
        database = Database(
            settings.database_url,
            min_conn=settings.db_pool_min_conn,
            max_conn=settings.db_pool_max_conn,
        )
        return PostgresPermissionStore(database)

    logger.info(f"🗄️ Using JSON permission store at {settings.permissions_file}")
    return JsonPermissionStore(settings.permissions_file)
