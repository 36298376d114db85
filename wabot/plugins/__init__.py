"""
WhatsApp Command Bot - Plugin System

This package contains the modular plugin architecture for the bot: the
command registry, the plugin base class and the plugin manager that loads
plugins into the registry.
"""

from .base_plugin import BasePlugin, PluginMetadata
from .plugin_manager import LoadReport, PluginManager
from .registry import Command, CommandRegistry

__all__ = [
    "BasePlugin",
    "PluginMetadata",
    "PluginManager",
    "LoadReport",
    "Command",
    "CommandRegistry",
]
