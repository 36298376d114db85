"""
WhatsApp Command Bot - Core Package

This package contains the core application logic for the WhatsApp Command Bot,
including message normalization, command dispatch, permissions, the plugin
system and the webhook server that connects the bot to a WhatsApp Web bridge.
"""

__version__ = "1.0.0"
__author__ = "WhatsApp Command Bot Team"
