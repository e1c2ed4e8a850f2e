from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from roombridge.errors import InvalidArgumentError, ResolutionError
from roombridge.models import PluginData, PluginDef, Repository
from roombridge.rpc import RemoteMethod

logger = logging.getLogger(__name__)


def _require_name(name: Any, *, arg: str = "name") -> str:
    if not isinstance(name, str) or not name:
        raise InvalidArgumentError(f"Missing required argument: {arg}")
    return name


def _plugins_from_wire(raw: Any) -> list[PluginData]:
    return [PluginData.model_validate(p) for p in (raw or [])]


class PluginManagement:
    """Plugin-management operations of a Session.

    Every call is guarded (`UnusableError`, `NotRunningError`) before any round trip
    and queries the remote plugin manager fresh; nothing is cached locally.
    Host classes provide `_require_running()` and `_invoke(method, *args)`.
    """

    def _require_running(self) -> None:  # pragma: no cover
        raise NotImplementedError

    async def _invoke(self, method: RemoteMethod, *args: Any) -> Any:  # pragma: no cover
        raise NotImplementedError

    async def get_plugins(self) -> list[PluginData]:
        self._require_running()
        return _plugins_from_wire(await self._invoke(RemoteMethod.get_plugins))

    async def get_plugin(self, name: str) -> PluginData | None:
        """Return the plugin's data, or None when no such plugin is loaded."""

        self._require_running()
        _require_name(name)
        raw = await self._invoke(RemoteMethod.get_plugin, name)
        if raw is None:
            return None
        return PluginData.model_validate(raw)

    async def enable_plugin(self, name: str) -> bool:
        self._require_running()
        _require_name(name)
        return bool(await self._invoke(RemoteMethod.enable_plugin, name))

    async def disable_plugin(self, name: str | Sequence[str]) -> bool:
        """Disable one plugin, or several in the given order.

        With a sequence, the first name that fails stops the loop: earlier names
        stay disabled (no rollback) and later names are never attempted.
        """

        self._require_running()
        names = [name] if isinstance(name, str) else list(name)
        for n in names:
            _require_name(n)
        for n in names:
            if not await self._invoke(RemoteMethod.disable_plugin, n):
                logger.debug("disable_plugin stopped at %s", n)
                return False
        return True

    async def has_plugin(self, name: str) -> bool:
        self._require_running()
        _require_name(name)
        return bool(await self._invoke(RemoteMethod.has_plugin, name))

    async def add_plugin(self, plugin: PluginDef | Mapping[str, Any]) -> int:
        """Load plugin source text.

        Returns the assigned id when the plugin and all of its dependencies loaded,
        -1 otherwise.
        """

        self._require_running()
        if plugin is None:
            raise InvalidArgumentError("Missing required argument: plugin")
        try:
            pdef = plugin if isinstance(plugin, PluginDef) else PluginDef.model_validate(plugin)
        except ValueError as e:
            raise InvalidArgumentError(f"Invalid plugin definition: {e}") from e
        return int(await self._invoke(RemoteMethod.add_plugin, pdef))

    async def get_plugins_that_depend_on(self, name: str) -> list[PluginData]:
        self._require_running()
        _require_name(name)
        return _plugins_from_wire(await self._invoke(RemoteMethod.get_dependent_plugins, name))

    async def add_repository(self, repository: Repository, append: bool = False) -> bool:
        """Add a plugin repository.

        `append=False` gives it the highest priority, `append=True` the lowest.
        """

        self._require_running()
        if not repository:
            raise InvalidArgumentError("Missing required argument: repository")
        return bool(await self._invoke(RemoteMethod.add_repository, repository, bool(append)))

    async def get_repositories(self) -> list[Repository]:
        self._require_running()
        return list(await self._invoke(RemoteMethod.get_repositories) or [])

    async def clear_repositories(self) -> None:
        # Already loaded plugins stay loaded.
        self._require_running()
        await self._invoke(RemoteMethod.clear_repositories)

    async def _configure_plugin(self, name: str, config: Any) -> int:
        plugin_id = await self._invoke(RemoteMethod.set_plugin_config, name, config)
        if plugin_id is None or int(plugin_id) < 0:
            raise ResolutionError(
                f'Cannot load plugin "{name}" from available repositories.',
                plugin_name=name,
            )
        return int(plugin_id)

    async def set_plugin_config(self, config: Mapping[str, Any], plugin_name: str | None = None) -> None:
        """Merge plugin config, auto-loading plugins that are not loaded yet.

        With `plugin_name`, `config` is that plugin's config. Without it, every
        top-level key of `config` is a plugin name. That form is best-effort,
        first-to-last and non-transactional: each plugin is one round trip, an
        unresolvable plugin does not stop the later ones, and a `ResolutionError`
        listing every failure is raised at the end.
        """

        self._require_running()
        if config is None:
            raise InvalidArgumentError("Missing required argument: config")
        if not isinstance(config, Mapping):
            raise InvalidArgumentError("config must be a mapping")

        if plugin_name is not None:
            _require_name(plugin_name, arg="plugin_name")
            await self._configure_plugin(plugin_name, config)
            return

        for name in config:
            _require_name(name, arg="plugin name")

        failures: dict[str, BaseException] = {}
        for name, plugin_config in config.items():
            try:
                await self._configure_plugin(name, plugin_config)
            except ResolutionError as e:
                logger.warning("%s", e)
                failures[name] = e
        if failures:
            names = ", ".join(f'"{n}"' for n in failures)
            raise ResolutionError(
                f"Cannot load plugins {names} from available repositories.",
                failures=failures,
            )

    async def get_plugin_config(self, plugin_name: str | None = None) -> dict[str, Any]:
        """Config of one plugin, or a mapping of every loaded plugin name to its config."""

        self._require_running()
        if plugin_name is None:
            return dict(await self._invoke(RemoteMethod.get_plugin_configs) or {})

        _require_name(plugin_name, arg="plugin_name")
        raw = await self._invoke(RemoteMethod.get_plugin_config, plugin_name)
        if raw is None:
            raise ResolutionError(f'Invalid plugin "{plugin_name}".', plugin_name=plugin_name)
        return dict(raw)
