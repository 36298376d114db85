"""
Basic functionality tests for the WhatsApp Command Bot.

These tests verify that core components can be imported and initialized
without errors, and that the built-in plugins are discovered and load.
"""

import unittest
from unittest.mock import MagicMock, patch

from wabot.plugins import CommandRegistry, PluginManager


class TestBasicFunctionality(unittest.IsolatedAsyncioTestCase):
    """Test basic functionality and imports."""

    def test_config_import(self):
        """Test that config module can be imported."""
        try:
            from wabot import config

            self.assertTrue(hasattr(config, "PREFIX"))
            self.assertTrue(hasattr(config, "DATABASE_URL"))
            self.assertIsInstance(config.BotSettings(), config.BotSettings)
        except ImportError as e:
            self.fail(f"Config import failed: {e}")

    def test_config_readers(self):
        from wabot import config

        with patch.dict("os.environ", {"X_INT": "5", "X_BOOL": "Yes", "X_LIST": "a, b,,c"}):
            self.assertEqual(config.get_env_int("X_INT"), 5)
            self.assertTrue(config.get_env_bool("X_BOOL"))
            self.assertEqual(config.get_env_list("X_LIST"), ["a", "b", "c"])

        with patch.dict("os.environ", {"X_INT": "five"}):
            with self.assertRaises(config.ConfigurationError):
                config.get_env_int("X_INT")

        with self.assertRaises(config.ConfigurationError):
            config.get_env_var("X_DEFINITELY_MISSING")

    def test_storage_import(self):
        """Test that the storage package can be imported."""
        try:
            from wabot import storage

            self.assertTrue(hasattr(storage, "create_permission_store"))
        except ImportError as e:
            self.fail(f"Storage import failed: {e}")

    async def test_plugin_discovery_and_initialization(self):
        """Built-in plugins are discovered and load without failures."""
        registry = CommandRegistry(prefix=".")
        handles = []

        def handle_factory(plugin_name, staging):
            handle = MagicMock()
            handle.prefix = "."
            handle.register_command.side_effect = (
                lambda name, handler, **meta: staging.register(name, handler, plugin=plugin_name, **meta)
            )
            handles.append(handle)
            return handle

        plugin_manager = PluginManager(registry, handle_factory)
        await plugin_manager.discover_plugins()
        self.assertEqual(
            set(plugin_manager.plugins), {"CoreCommands", "Permissions", "Maintenance"}
        )

        report = await plugin_manager.load_all()

        self.assertTrue(report.ok, report.failed)
        self.assertEqual(len(handles), 3)
        self.assertEqual(registry.get("help").plugin, "CoreCommands")
        self.assertTrue(registry.get("reload").owner_only)

    async def test_discovery_reports_missing_package(self):
        plugin_manager = PluginManager(CommandRegistry(), lambda name, registry: None,
                                       plugin_packages=["wabot.no_such_plugins"])

        report = await plugin_manager.load_all()

        self.assertEqual(report.succeeded, [])
        self.assertEqual(report.failed[0].name, "wabot.no_such_plugins")

    async def test_reload_rediscovers_modules(self):
        registry = CommandRegistry(prefix=".")

        def handle_factory(plugin_name, staging):
            handle = MagicMock()
            handle.prefix = "."
            handle.register_command.side_effect = (
                lambda name, handler, **meta: staging.register(name, handler, plugin=plugin_name, **meta)
            )
            return handle

        plugin_manager = PluginManager(
            registry, handle_factory, plugin_packages=["wabot.plugins.core_plugins"]
        )
        await plugin_manager.load_all()
        old_instance = plugin_manager.get_plugin("CoreCommands").instance

        report = await plugin_manager.reload()

        self.assertTrue(report.ok)
        new_instance = plugin_manager.get_plugin("CoreCommands").instance
        self.assertIsNot(new_instance, old_instance)
        self.assertFalse(old_instance.is_initialized)
        self.assertIn("help", registry)


if __name__ == "__main__":
    unittest.main()
