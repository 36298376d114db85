"""
WhatsApp Command Bot - Plugin Manager

Manages plugin discovery, loading, initialization, reload and lifecycle.
Each plugin is initialized in isolation: one failing plugin is recorded in
the load report and never stops the others from loading.
"""

import importlib
import inspect
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

from .base_plugin import BasePlugin
from .registry import CommandRegistry

logger = logging.getLogger(__name__)


class PluginLoadError(Exception):
    """Exception raised when a plugin module fails to import."""

    pass


class PluginDependencyError(Exception):
    """Exception raised when plugin dependencies cannot be resolved."""

    pass


class PluginInitError(Exception):
    """Exception raised when a plugin's initializer fails."""

    def __init__(self, plugin: str, error: Union[BaseException, str]):
        super().__init__(f"Plugin {plugin} failed to initialize: {error}")
        self.plugin = plugin
        self.error = error


InitFunction = Callable[[Any], Union[Awaitable[Optional[bool]], Optional[bool]]]


@dataclass
class PluginRecord:
    """A discovered plugin and its initializer."""

    name: str
    init: InitFunction
    version: str = "1.0.0"
    description: str = ""
    dependencies: List[str] = field(default_factory=list)
    instance: Optional[BasePlugin] = None
    module: Optional[str] = None
    enabled: bool = False
    error: Optional[str] = None

    @classmethod
    def from_plugin(cls, plugin: BasePlugin, module: Optional[str] = None) -> "PluginRecord":
        metadata = plugin.metadata
        return cls(
            name=metadata.name,
            init=plugin.initialize,
            version=metadata.version,
            description=metadata.description,
            dependencies=list(metadata.dependencies),
            instance=plugin,
            module=module or type(plugin).__module__,
        )

    @classmethod
    def from_module_init(cls, module: ModuleType) -> "PluginRecord":
        """Record for a module that exposes a module-level init(bot)."""
        doc = (module.__doc__ or "").strip().splitlines()
        return cls(
            name=getattr(module, "PLUGIN_NAME", module.__name__.rsplit(".", 1)[-1]),
            init=module.init,
            version=getattr(module, "__version__", "1.0.0"),
            description=doc[0] if doc else "",
            dependencies=list(getattr(module, "DEPENDENCIES", [])),
            module=module.__name__,
        )


@dataclass
class PluginFailure:
    name: str
    error: BaseException


@dataclass
class LoadReport:
    """Outcome of one load pass."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[PluginFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return f"{len(self.succeeded)} loaded, {len(self.failed)} failed"


class PluginManager:
    """
    Manages the plugin system for the bot.

    Plugins never see the live registry while they load: each load pass
    registers into a fresh staging registry which is published in one step
    once every plugin has been initialized.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        handle_factory: Callable[[str, CommandRegistry], Any],
        plugin_packages: Optional[List[str]] = None,
    ):
        """
        Args:
            registry: The live command registry
            handle_factory: Builds the BotHandle given to a plugin, bound to
                the plugin name and the registry it registers into
            plugin_packages: Dotted package names to scan for plugins
        """
        self.registry = registry
        self.handle_factory = handle_factory
        self.plugin_packages = plugin_packages if plugin_packages is not None else [
            "wabot.plugins.core_plugins",
            "wabot.plugins.admin_plugins",
        ]
        self.plugins: Dict[str, PluginRecord] = {}
        self.plugin_configs: Dict[str, Dict[str, Any]] = {}
        self.failed_plugins: Dict[str, str] = {}
        self.last_report: Optional[LoadReport] = None
        self._discovery_failures: List[PluginFailure] = []
        self._dependency_graph: Dict[str, Set[str]] = {}
        self._discovered = False

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover_plugins(self, reload_modules: bool = False) -> None:
        """Discover all available plugins in the plugin packages."""
        logger.info("🔍 Discovering plugins...")

        self.plugins = {}
        self._discovery_failures = []
        discovered_count = 0

        for package_name in self.plugin_packages:
            try:
                discovered_count += self._discover_plugins_in_package(package_name, reload_modules)
            except Exception as e:
                logger.error(f"Error discovering plugins in {package_name}: {e}")
                self._discovery_failures.append(
                    PluginFailure(package_name, PluginLoadError(str(e)))
                )

        self._discovered = True
        logger.info(f"📦 Discovered {discovered_count} plugins")

        self._build_dependency_graph()

    def _discover_plugins_in_package(self, package_name: str, reload_modules: bool) -> int:
        """Discover plugins in one package directory."""
        package = importlib.import_module(package_name)
        package_file = getattr(package, "__file__", None)
        if not package_file:
            logger.warning(f"Plugin package has no location: {package_name}")
            return 0

        discovered = 0
        for python_file in sorted(Path(package_file).parent.glob("*.py")):
            if python_file.name.startswith("__"):
                continue

            module_path = f"{package_name}.{python_file.stem}"
            try:
                module = self._import_module(module_path, reload_modules)
            except Exception as e:
                logger.error(f"Failed to import module {module_path}: {e}")
                self.failed_plugins[python_file.stem] = str(e)
                self._discovery_failures.append(
                    PluginFailure(python_file.stem, PluginLoadError(f"{module_path}: {e}"))
                )
                continue

            for record in self._records_from_module(module):
                if record.name in self.plugins:
                    logger.warning(f"Plugin {record.name} already exists, skipping")
                    continue
                self.plugins[record.name] = record
                discovered += 1
                logger.info(f"✅ Discovered plugin: {record.name} v{record.version}")

        return discovered

    @staticmethod
    def _import_module(module_path: str, reload_modules: bool) -> ModuleType:
        if reload_modules and module_path in sys.modules:
            return importlib.reload(sys.modules[module_path])
        return importlib.import_module(module_path)

    def _records_from_module(self, module: ModuleType) -> List[PluginRecord]:
        """Find BasePlugin subclasses, or a module-level init(), in a module."""
        records = []

        for name, obj in inspect.getmembers(module, inspect.isclass):
            if (
                issubclass(obj, BasePlugin)
                and obj is not BasePlugin
                and obj.__module__ == module.__name__
                and not inspect.isabstract(obj)
            ):
                try:
                    records.append(PluginRecord.from_plugin(obj(), module.__name__))
                except Exception as e:
                    logger.error(f"Failed to instantiate plugin {name}: {e}")
                    self.failed_plugins[name] = str(e)
                    self._discovery_failures.append(PluginFailure(name, PluginLoadError(str(e))))

        if not records and callable(getattr(module, "init", None)):
            records.append(PluginRecord.from_module_init(module))

        return records

    def _coerce_source(self, source: Any) -> List[PluginRecord]:
        """Turn one plugin source into records."""
        if isinstance(source, PluginRecord):
            return [source]
        if isinstance(source, BasePlugin):
            return [PluginRecord.from_plugin(source)]
        if isinstance(source, ModuleType):
            return self._records_from_module(source)
        if isinstance(source, str):
            return self._records_from_module(importlib.import_module(source))
        raise PluginLoadError(f"Unsupported plugin source: {source!r}")

    # ------------------------------------------------------------------
    # Dependency ordering
    # ------------------------------------------------------------------

    def _build_dependency_graph(self) -> None:
        """Build the plugin dependency graph."""
        self._dependency_graph.clear()

        for plugin_name, record in self.plugins.items():
            dependencies = set(record.dependencies)
            self._dependency_graph[plugin_name] = dependencies

            for dep in dependencies:
                if dep not in self.plugins:
                    logger.error(f"Plugin {plugin_name} has missing dependency: {dep}")

    def _resolve_load_order(self) -> Tuple[List[str], List[str]]:
        """
        Topologically sort plugins by dependency.

        Returns:
            (load order, names stuck in a dependency cycle)
        """
        in_degree = {name: 0 for name in self.plugins}

        for plugin_name, dependencies in self._dependency_graph.items():
            for dep in dependencies:
                if dep in in_degree and plugin_name in in_degree:
                    in_degree[plugin_name] += 1

        # Discovery order among plugins with no pending dependencies
        queue = [name for name, degree in in_degree.items() if degree == 0]
        load_order = []

        while queue:
            current = queue.pop(0)
            load_order.append(current)

            for plugin_name, dependencies in self._dependency_graph.items():
                if current in dependencies and plugin_name in in_degree:
                    in_degree[plugin_name] -= 1
                    if in_degree[plugin_name] == 0:
                        queue.append(plugin_name)

        remaining = [name for name in self.plugins if name not in load_order]
        return load_order, remaining

    def _get_load_order(self) -> List[str]:
        """
        Calculate the plugin load order based on dependencies.

        Raises:
            PluginDependencyError: If circular dependencies are detected
        """
        load_order, remaining = self._resolve_load_order()
        if remaining:
            raise PluginDependencyError(f"Circular dependencies detected: {remaining}")
        return load_order

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_all(self, plugin_sources: Optional[List[Any]] = None) -> LoadReport:
        """
        Initialize plugins and publish their commands.

        Args:
            plugin_sources: Plugins to load (BasePlugin instances, PluginRecords,
                modules or dotted module names). Defaults to the discovered
                plugins, discovering first if needed.

        Returns:
            LoadReport listing loaded plugins and per-plugin failures
        """
        report = LoadReport()

        if plugin_sources is not None:
            self.plugins = {}
            for source in plugin_sources:
                try:
                    records = self._coerce_source(source)
                except Exception as e:
                    name = getattr(source, "__name__", None) or str(source)
                    logger.error(f"❌ Failed to load plugin source {name}: {e}")
                    report.failed.append(PluginFailure(name, e))
                    continue
                for record in records:
                    self.plugins[record.name] = record
            self._build_dependency_graph()
        else:
            if not self._discovered:
                await self.discover_plugins()
            report.failed.extend(self._discovery_failures)

        load_order, cyclic = self._resolve_load_order()
        for name in cyclic:
            error = PluginDependencyError(f"Plugin {name} is part of a dependency cycle")
            logger.error(f"❌ {error}")
            self._mark_failed(self.plugins[name], error, report)

        staging = CommandRegistry(prefix=self.registry.prefix)
        logger.info(f"🚀 Initializing plugins in order: {load_order}")

        for plugin_name in load_order:
            record = self.plugins[plugin_name]
            missing = [
                dep for dep in record.dependencies
                if dep not in self.plugins or self.plugins[dep].error
            ]
            if missing:
                self._mark_failed(
                    record, PluginInitError(plugin_name, f"missing dependencies {missing}"), report
                )
                continue

            try:
                await self._initialize_plugin(record, staging)
            except PluginInitError as e:
                staging.unregister_plugin(record.name)
                self._mark_failed(record, e, report)
                continue

            report.succeeded.append(plugin_name)

        # Publish every command in one step
        self.registry.replace_with(staging)

        await self.enable_all_plugins()

        self.last_report = report
        logger.info(
            f"🔌 Plugins ready - {report.summary()}, {len(self.registry)} commands registered"
        )
        return report

    async def _initialize_plugin(self, record: PluginRecord, registry: CommandRegistry) -> None:
        """
        Initialize a single plugin against the given registry.

        Raises:
            PluginInitError: If the initializer raises or returns False
        """
        record.error = None
        record.enabled = False

        if record.instance is not None:
            record.instance.set_config(self.plugin_configs.get(record.name, {}))

        try:
            handle = self.handle_factory(record.name, registry)
            if record.instance is not None:
                record.instance.bot = handle
            result = record.init(handle)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            logger.error(f"❌ Failed to initialize plugin {record.name}: {e}", exc_info=True)
            raise PluginInitError(record.name, e) from e

        if result is False:
            logger.error(f"Plugin {record.name} initialization returned False")
            raise PluginInitError(record.name, "initializer returned False")

        if record.instance is not None:
            record.instance._mark_initialized()
        logger.info(f"✅ Initialized plugin: {record.name}")

    def _mark_failed(self, record: PluginRecord, error: BaseException, report: LoadReport) -> None:
        record.error = str(error)
        record.enabled = False
        self.failed_plugins[record.name] = str(error)
        report.failed.append(PluginFailure(record.name, error))

    async def enable_all_plugins(self) -> None:
        """Enable all initialized plugins."""
        enabled_count = 0

        for plugin_name, record in self.plugins.items():
            if record.error:
                continue

            if record.instance is None:
                record.enabled = True
                enabled_count += 1
                continue

            if not record.instance.is_initialized:
                continue

            try:
                record.enabled = bool(await record.instance.enable())
                if record.enabled:
                    enabled_count += 1
            except Exception as e:
                logger.error(f"Failed to enable plugin {plugin_name}: {e}")
                self.failed_plugins[plugin_name] = str(e)

        logger.info(f"🟢 Enabled {enabled_count} plugins")

    async def reload(self) -> LoadReport:
        """
        Reload every plugin and atomically replace the command table.

        The current commands stay live until the new set is complete.
        """
        logger.info("🔄 Reloading plugins...")

        await self.shutdown_all_plugins()
        self.failed_plugins = {}

        if self._discovered:
            await self.discover_plugins(reload_modules=True)
            return await self.load_all()

        return await self.load_all(list(self.plugins.values()))

    async def shutdown_all_plugins(self) -> None:
        """Shutdown all plugins gracefully."""
        logger.info("🔄 Shutting down all plugins...")

        for plugin_name, record in self.plugins.items():
            record.enabled = False
            if record.instance is None:
                continue
            try:
                await record.instance.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down plugin {plugin_name}: {e}")

        logger.info("✅ All plugins shut down")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_plugin(self, name: str) -> Optional[PluginRecord]:
        """Get a plugin record by name."""
        return self.plugins.get(name)

    def get_all_commands(self) -> Dict[str, str]:
        """All registered commands with their descriptions."""
        return {command.name: command.description for command in self.registry.list()}

    def get_plugin_status(self) -> Dict[str, Dict[str, Any]]:
        """Get status information for all plugins."""
        command_counts: Dict[str, int] = {}
        for command in self.registry.list():
            command_counts[command.plugin] = command_counts.get(command.plugin, 0) + 1

        status = {}
        for plugin_name, record in self.plugins.items():
            status[plugin_name] = {
                "version": record.version,
                "enabled": record.enabled,
                "description": record.description,
                "dependencies": record.dependencies,
                "commands": command_counts.get(plugin_name, 0),
            }
            if record.error:
                status[plugin_name]["error"] = record.error

        for plugin_name, error in self.failed_plugins.items():
            if plugin_name not in status:
                status[plugin_name] = {
                    "version": "unknown",
                    "enabled": False,
                    "description": "Failed to load",
                    "dependencies": [],
                    "commands": 0,
                    "error": error,
                }

        return status

    def set_plugin_config(self, plugin_name: str, config: Dict[str, Any]) -> None:
        """Set configuration for a specific plugin."""
        self.plugin_configs[plugin_name] = config

        record = self.plugins.get(plugin_name)
        if record and record.instance:
            record.instance.set_config(config)
