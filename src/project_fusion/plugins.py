"""Plugin records and the fault-isolated hook chain."""

from __future__ import annotations

import importlib.util
import re
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Any

from project_fusion.config import GROUP_NAME_PATTERN, normalize_extension
from project_fusion.exceptions import ErrorKind, FusionCancelledError, PluginRegistrationError
from project_fusion.logging import logger
from project_fusion.models import FUSION_RESULT_TYPES, FileCandidate, FileRecord
from project_fusion.output_construction import OutputStrategy

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path
    from types import TracebackType

    from project_fusion.cancellation import CancellationToken
    from project_fusion.config import FusionConfig
    from project_fusion.diagnostics import DiagnosticLog
    from project_fusion.models import FusionResult

PLUGIN_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
PLUGIN_ATTRIBUTE = "plugin"

HOOK_SLOTS: tuple[str, ...] = (
    "before_file_processing",
    "after_file_processing",
    "before_fusion",
    "after_fusion",
    "register_output_strategies",
    "register_file_extensions",
    "initialize",
    "cleanup",
)


@dataclass(frozen=True)
class PluginMetadata:
    name: str
    version: str = "0.0.0"
    description: str = ""
    author: str | None = None
    homepage: str | None = None


@dataclass(frozen=True)
class Plugin:
    """A plugin as a closed set of optional hook slots.

    Every slot is either ``None`` (no-op) or a callable; this is checked when
    the record is built, never when a hook is invoked.

    Attributes:
        metadata: Name and version information.
        before_file_processing: ``(candidate, config) -> FileCandidate | None``; ``None`` vetoes the file.
        after_file_processing: ``(candidate, content, config) -> str``.
        before_fusion: ``(records, config) -> list[FileRecord]``.
        after_fusion: ``(result, config) -> FusionResult``.
        register_output_strategies: ``() -> list[OutputStrategy]``.
        register_file_extensions: ``() -> dict[str, list[str]]``.
        initialize: ``(config) -> None``, called once before the run.
        cleanup: ``() -> None``, called once after the run.
    """

    metadata: PluginMetadata
    before_file_processing: Callable[[FileCandidate, FusionConfig], FileCandidate | None] | None = None
    after_file_processing: Callable[[FileCandidate, str, FusionConfig], str] | None = None
    before_fusion: Callable[[list[FileRecord], FusionConfig], list[FileRecord]] | None = None
    after_fusion: Callable[[FusionResult, FusionConfig], FusionResult] | None = None
    register_output_strategies: Callable[[], list[OutputStrategy]] | None = None
    register_file_extensions: Callable[[], dict[str, list[str]]] | None = None
    initialize: Callable[[FusionConfig], None] | None = None
    cleanup: Callable[[], None] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, PluginMetadata):
            raise PluginRegistrationError(message="Plugin metadata must be a PluginMetadata instance.")
        name = self.metadata.name
        if not PLUGIN_NAME_PATTERN.match(name or ""):
            raise PluginRegistrationError(plugin=str(name), message=f"Invalid plugin name {name!r}.")
        for f in fields(self):
            if f.name == "metadata":
                continue
            slot = getattr(self, f.name)
            if slot is not None and not callable(slot):
                raise PluginRegistrationError(
                    plugin=name,
                    message=f"Plugin {name!r}: hook {f.name!r} must be callable, got {type(slot).__name__}.",
                )

    @property
    def name(self) -> str:
        return self.metadata.name


def create_plugin(name: str, version: str = "0.0.0", description: str = "", **hooks: Any) -> Plugin:  # noqa: ANN401
    """Build a ``Plugin`` from keyword hook slots.

    Raises:
        PluginRegistrationError: if a keyword is not a known hook slot, or a slot is not callable.
    """
    unknown = sorted(set(hooks) - set(HOOK_SLOTS))
    if unknown:
        raise PluginRegistrationError(plugin=name, message=f"Plugin {name!r}: unknown hook slot(s) {', '.join(unknown)}.")
    return Plugin(metadata=PluginMetadata(name=name, version=version, description=description), **hooks)


@dataclass
class PluginSettings:
    enabled: bool = True
    options: dict[str, Any] = field(default_factory=dict)


class PluginManager:
    """Registers plugins and runs their hooks in registration order.

    Each hook category is a reducer over an evolving value. A hook that
    raises, or returns a value of the wrong type, is reported as
    ``PluginHookFailed`` and the value it received flows on to the next hook.
    """

    def __init__(self) -> None:
        self._plugins: dict[str, Plugin] = {}
        self._settings: dict[str, PluginSettings] = {}
        self._diagnostics: DiagnosticLog | None = None
        self._cancellation: CancellationToken | None = None

    # ------------------------------ registry ------------------------------

    def register(self, plugin: Plugin) -> None:
        if not isinstance(plugin, Plugin):
            raise PluginRegistrationError(message=f"Expected a Plugin record, got {type(plugin).__name__}.")
        if plugin.name in self._plugins:
            logger.warning("plugin_replaced", plugin=plugin.name)
        self._plugins[plugin.name] = plugin
        self._settings.setdefault(plugin.name, PluginSettings())
        logger.info("plugin_registered", plugin=plugin.name, version=plugin.metadata.version)

    def unregister(self, name: str) -> None:
        self._plugins.pop(name, None)
        self._settings.pop(name, None)

    def configure(self, name: str, *, enabled: bool = True, options: dict[str, Any] | None = None) -> None:
        self._settings[name] = PluginSettings(enabled=enabled, options=dict(options or {}))

    def options_for(self, name: str) -> dict[str, Any]:
        return dict(self._settings.get(name, PluginSettings()).options)

    def get(self, name: str) -> Plugin | None:
        return self._plugins.get(name)

    def list_plugins(self) -> list[PluginMetadata]:
        return [p.metadata for p in self._plugins.values()]

    def enabled_plugins(self) -> list[Plugin]:
        return [p for name, p in self._plugins.items() if self._settings.get(name, PluginSettings()).enabled]

    # ------------------------------ loading -------------------------------

    def load_plugin(self, path: Path) -> Plugin:
        """Import a plugin module from ``path`` and register the plugin it exposes.

        The module must define a module-level ``plugin`` attribute holding a
        ``Plugin`` record, or a zero-argument callable returning one.

        Args:
            path (Path): path to a ``.py`` file

        Raises:
            PluginRegistrationError: if the module cannot be imported or exposes no valid plugin.

        Returns:
            Plugin: the registered plugin
        """
        safe_stem = re.sub(r"\W", "_", path.stem)
        module_name = f"project_fusion_plugin_{safe_stem}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise PluginRegistrationError(plugin=str(path), message=f"Cannot import plugin module {path}.")
        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise PluginRegistrationError(plugin=str(path), message=f"Failed to import plugin {path}: {e}") from e

        exposed = getattr(module, PLUGIN_ATTRIBUTE, None)
        if callable(exposed) and not isinstance(exposed, Plugin):
            exposed = exposed()
        if not isinstance(exposed, Plugin):
            raise PluginRegistrationError(plugin=str(path), message=f"Module {path} does not expose a Plugin as {PLUGIN_ATTRIBUTE!r}.")
        self.register(exposed)
        return exposed

    def load_plugins_from_directory(self, directory: Path) -> list[Plugin]:
        """Load every ``*.py`` module found under ``directory``, in sorted order.

        Modules that fail to load are logged and skipped. A missing directory
        loads nothing.
        """
        if not directory.is_dir():
            return []
        loaded: list[Plugin] = []
        for path in sorted(directory.rglob("*.py")):
            if path.name.startswith("_"):
                continue
            try:
                loaded.append(self.load_plugin(path))
            except PluginRegistrationError as e:
                logger.warning("plugin_load_skipped", path=str(path), error=str(e))
        return loaded

    # ------------------------------ lifecycle -----------------------------

    def session(
        self,
        config: FusionConfig,
        *,
        diagnostics: DiagnosticLog | None = None,
        cancellation: CancellationToken | None = None,
    ) -> PluginSession:
        """Bind a run's diagnostics and cancellation token, with initialize/cleanup around it."""
        return PluginSession(self, config, diagnostics=diagnostics, cancellation=cancellation)

    def initialize_plugins(self, config: FusionConfig) -> None:
        for plugin in self.enabled_plugins():
            if plugin.initialize is None:
                continue
            try:
                plugin.initialize(config)
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "initialize", e)

    def cleanup_plugins(self) -> None:
        for plugin in self.enabled_plugins():
            if plugin.cleanup is None:
                continue
            try:
                plugin.cleanup()
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "cleanup", e)

    # ------------------------------ reporting -----------------------------

    def _hook_failed(self, plugin: Plugin, hook: str, error: BaseException | str, path: str | None = None) -> None:
        reason = f"{plugin.name}.{hook}: {error}"
        if self._diagnostics is not None:
            self._diagnostics.record(
                "plugin_hook_failed",
                kind=ErrorKind.PLUGIN_HOOK_FAILED,
                path=path,
                reason=reason,
                level="warning",
                plugin=plugin.name,
                hook=hook,
            )
        else:
            logger.warning("plugin_hook_failed", plugin=plugin.name, hook=hook, path=path, reason=str(error))

    def _enter_chain(self, hook: str) -> None:
        if self._cancellation is not None:
            self._cancellation.raise_if_cancelled(f"{hook} hook chain")

    # ------------------------------ hook chains ---------------------------

    def before_file_processing(self, candidate: FileCandidate, config: FusionConfig) -> FileCandidate | None:
        """Run the ``before_file_processing`` chain; ``None`` means the file was vetoed.

        Raises:
            FusionCancelledError: if the run is cancelled on chain entry.
        """
        self._enter_chain("before_file_processing")
        current = candidate
        for plugin in self.enabled_plugins():
            hook = plugin.before_file_processing
            if hook is None:
                continue
            try:
                result = hook(current, config)
            except FusionCancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "before_file_processing", e, current.relative_path)
                continue
            if result is None:
                if self._diagnostics is not None:
                    self._diagnostics.record(
                        "file_vetoed",
                        path=current.relative_path,
                        reason=f"vetoed by plugin {plugin.name}",
                        plugin=plugin.name,
                    )
                return None
            if not isinstance(result, FileCandidate):
                self._hook_failed(
                    plugin,
                    "before_file_processing",
                    f"returned {type(result).__name__}, expected FileCandidate",
                    current.relative_path,
                )
                continue
            current = result
        return current

    def after_file_processing(self, candidate: FileCandidate, content: str, config: FusionConfig) -> str:
        self._enter_chain("after_file_processing")
        current = content
        for plugin in self.enabled_plugins():
            hook = plugin.after_file_processing
            if hook is None:
                continue
            try:
                result = hook(candidate, current, config)
            except FusionCancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "after_file_processing", e, candidate.relative_path)
                continue
            if not isinstance(result, str):
                self._hook_failed(
                    plugin,
                    "after_file_processing",
                    f"returned {type(result).__name__}, expected str",
                    candidate.relative_path,
                )
                continue
            current = result
        return current

    def before_fusion(self, records: list[FileRecord], config: FusionConfig) -> list[FileRecord]:
        self._enter_chain("before_fusion")
        current = list(records)
        for plugin in self.enabled_plugins():
            hook = plugin.before_fusion
            if hook is None:
                continue
            try:
                result = hook(list(current), config)
            except FusionCancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "before_fusion", e)
                continue
            if not isinstance(result, list) or not all(isinstance(r, FileRecord) for r in result):
                self._hook_failed(plugin, "before_fusion", "returned a value that is not a list of FileRecord")
                continue
            current = result
        return current

    def after_fusion(self, result: FusionResult, config: FusionConfig) -> FusionResult:
        self._enter_chain("after_fusion")
        current = result
        for plugin in self.enabled_plugins():
            hook = plugin.after_fusion
            if hook is None:
                continue
            try:
                new = hook(current, config)
            except FusionCancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "after_fusion", e)
                continue
            if not isinstance(new, FUSION_RESULT_TYPES):
                self._hook_failed(plugin, "after_fusion", f"returned {type(new).__name__}, expected a fusion result")
                continue
            current = new
        return current

    # ------------------------------ extension points ----------------------

    def additional_output_strategies(self) -> list[OutputStrategy]:
        """Collect output strategies contributed by enabled plugins."""
        strategies: list[OutputStrategy] = []
        for plugin in self.enabled_plugins():
            hook = plugin.register_output_strategies
            if hook is None:
                continue
            try:
                contributed = list(hook())
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "register_output_strategies", e)
                continue
            for strategy in contributed:
                if not isinstance(strategy, OutputStrategy) or not strategy.name or not strategy.extension:
                    self._hook_failed(plugin, "register_output_strategies", f"invalid strategy {strategy!r}")
                    continue
                strategies.append(strategy)
        return strategies

    def additional_file_extensions(self) -> dict[str, list[str]]:
        """Collect extension groups contributed by enabled plugins.

        Groups with an invalid name are reported and dropped; extensions for
        the same group from several plugins are merged.
        """
        groups: dict[str, list[str]] = {}
        for plugin in self.enabled_plugins():
            hook = plugin.register_file_extensions
            if hook is None:
                continue
            try:
                contributed = dict(hook())
            except Exception as e:  # noqa: BLE001
                self._hook_failed(plugin, "register_file_extensions", e)
                continue
            for group, exts in contributed.items():
                if not isinstance(group, str) or not GROUP_NAME_PATTERN.match(group):
                    self._hook_failed(plugin, "register_file_extensions", f"invalid extension group name {group!r}")
                    continue
                if isinstance(exts, str) or not all(isinstance(e, str) for e in exts):
                    self._hook_failed(plugin, "register_file_extensions", f"extensions of group {group!r} must be strings")
                    continue
                bucket = groups.setdefault(group, [])
                bucket.extend(e for e in (normalize_extension(x) for x in exts) if e and e not in bucket)
        return groups


class PluginSession:
    """Context manager returned by ``PluginManager.session``."""

    def __init__(
        self,
        manager: PluginManager,
        config: FusionConfig,
        *,
        diagnostics: DiagnosticLog | None = None,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self.manager = manager
        self.config = config
        self.diagnostics = diagnostics
        self.cancellation = cancellation

    def __enter__(self) -> PluginManager:
        self.manager._diagnostics = self.diagnostics  # noqa: SLF001
        self.manager._cancellation = self.cancellation  # noqa: SLF001
        self.manager.initialize_plugins(self.config)
        return self.manager

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.manager.cleanup_plugins()
        finally:
            self.manager._diagnostics = None  # noqa: SLF001
            self.manager._cancellation = None  # noqa: SLF001
