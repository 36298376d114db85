"""
WhatsApp Command Bot - Storage

Durable storage backends for bot state.
"""

from .permission_store import (
    JsonPermissionStore,
    PermissionStore,
    PermissionStoreIOError,
    PostgresPermissionStore,
    create_permission_store,
)

__all__ = [
    "JsonPermissionStore",
    "PermissionStore",
    "PermissionStoreIOError",
    "PostgresPermissionStore",
    "create_permission_store",
]
