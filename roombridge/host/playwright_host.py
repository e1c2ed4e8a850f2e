"""Host process, RemoteContext and RoomOpener implemented on Playwright/Chromium.

Each RemoteContext is one browser tab. Rooms are brought up by loading the
Haxball Headless Manager (HHM) into the tab and installing `window.hroomie`, the
remote half of the call/response protocol in `roombridge.rpc`.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from playwright.async_api import BrowserContext, ConsoleMessage as PWConsoleMessage, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from roombridge.config import HostSettings, Viewport
from roombridge.contracts import ConsoleMessage, ContextEventCategory, InboundHandler, RemoteContext, RoomOpenerFactory
from roombridge.errors import InvalidArgumentError
from roombridge.models import PluginDef, RoomInfo
from roombridge.rpc import to_wire

logger = logging.getLogger(__name__)

DEFAULT_HHM_URL = "https://hhm.surge.sh/releases/hhm-0.9.2.js"
INBOUND_FUNCTION = "hroomieEvent"

# Repositories searched after the caller's own ones.
DEFAULT_REPOSITORIES: tuple[dict[str, str], ...] = (
    {"type": "github", "repository": "morko/hhm-sala-plugins"},
    {"type": "github", "repository": "saviola777/hhm-plugins"},
)

# Plugins every room loads unless `disableDefaultPlugins` is set. `hr/kickban`
# backs Session.kick/ban/unban/banned_players.
DEFAULT_PLUGINS: tuple[str, ...] = (
    "sav/roles",
    "sav/commands",
    "hr/kickban",
    "hr/always-one-admin",
    "hr/pause",
)

ROOM_HANDLERS = (
    "onPlayerJoin",
    "onPlayerLeave",
    "onTeamVictory",
    "onPlayerChat",
    "onTeamGoal",
    "onGameStart",
    "onGameStop",
    "onPlayerAdminChange",
    "onPlayerTeamChange",
    "onPlayerKicked",
    "onGamePause",
    "onGameUnpause",
    "onPositionsReset",
    "onStadiumChange",
)

# Starts HHM with the prepared room config and resolves with the room link.
START_ROOM_SOURCE = """
async ([config, handlers, inbound]) => {
  window.hrConfig = config;
  HHM.config = HHM.config || {};
  HHM.config.room = {
    roomName: config.roomName, playerName: config.playerName,
    maxPlayers: config.maxPlayers, public: config.public,
    geo: config.geo, token: config.token, noPlayer: true,
  };
  HHM.config.plugins = Object.assign({}, config.pluginConfig || {});
  HHM.config.repositories = config.repositories || [];
  HHM.config.postInit = (HBInit) => {
    const room = HBInit();
    room.pluginSpec = { name: 'hr/bridge' };
    for (const h of handlers) {
      room[h] = (...args) => window[inbound]({ kind: 'room', handlerName: h, args: JSON.parse(JSON.stringify(args)) });
    }
    const forward = (eventType) => (data) => window[inbound]({
      kind: 'plugin', eventType,
      pluginData: { id: data.pluginId, name: data.pluginName || data.name, isEnabled: !!data.isEnabled, pluginSpec: data.pluginSpec || null },
    });
    room.onHhm_pluginLoaded = forward('pluginLoaded');
    room.onHhm_pluginRemoved = forward('pluginRemoved');
    room.onHhm_pluginEnabled = forward('pluginEnabled');
    room.onHhm_pluginDisabled = forward('pluginDisabled');
  };
  HHM.manager.start();
  const roomLink = await HHM.deferreds.roomLink.promise;
  for (const p of config.plugins || []) {
    await HHM.manager.addPluginByCode(p.content, p.name);
  }
  const info = Object.assign({}, config, { roomLink });
  for (const key of ['token', 'hostPassword', 'adminPassword', 'pluginConfig', 'plugins']) delete info[key];
  return info;
}
"""

# Remote half of roombridge.rpc.RemoteMethod.
BRIDGE_SHIM_SOURCE = """
() => {
  const m = () => HHM.manager;
  const data = (p) => p && { id: p._id, name: p.pluginSpec.name, isEnabled: m().isPluginEnabled(p._id), pluginSpec: p.pluginSpec };
  const byName = (name) => m().getPluginByName(name);
  const kickban = () => {
    const p = byName('hr/kickban');
    if (!p) throw new Error('Plugin "hr/kickban" is not loaded.');
    return p;
  };
  const resolve = async (name) => {
    let id = m().getPluginId(name);
    if (id < 0) id = await m().addPluginByName(name);
    return id;
  };
  window.hroomie = {
    callRoom: (fn, args) => m().room[fn](...args),
    getPlugins: () => m().getLoadedPluginIds().map((id) => data(m().getPluginById(id))),
    getPlugin: (name) => data(byName(name)) || null,
    enablePlugin: (name) => m().enablePluginById(m().getPluginId(name)),
    disablePlugin: (name) => m().disablePluginById(m().getPluginId(name)),
    hasPlugin: (name) => m().hasPluginByName(name),
    addPlugin: (plugin) => m().addPluginByCode(plugin.content, plugin.name),
    getDependentPlugins: (name) => m().getDependentPlugins(m().getPluginId(name)).map((id) => data(m().getPluginById(id))),
    addRepository: (repository, append) => m().addRepository(repository, append),
    getRepositories: () => m().getPluginLoader().repositories,
    clearRepositories: () => { m().getPluginLoader().repositories = []; },
    setPluginConfig: async (name, config) => {
      const id = await resolve(name);
      if (id >= 0) m().setPluginConfig(id, config);
      return id;
    },
    getPluginConfig: (name) => { const p = byName(name); return p ? p.getConfig() : null; },
    getPluginConfigs: () => {
      const cfg = {};
      for (const id of m().getLoadedPluginIds()) {
        const p = m().getPluginById(id);
        cfg[p.pluginSpec.name] = p.getConfig();
      }
      return cfg;
    },
    kick: (id) => kickban().kick(id),
    ban: (id) => kickban().ban(id),
    unban: (id) => kickban().unban(id),
    bannedPlayers: () => Array.from(kickban().bannedPlayers()),
  };
}
"""


def _default_plugin_config(config: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    plugins: dict[str, dict[str, Any]] = {name: {} for name in DEFAULT_PLUGINS}
    roles = {
        role: config[key]
        for role, key in (("host", "hostPassword"), ("admin", "adminPassword"))
        if config.get(key)
    }
    if roles:
        plugins["sav/roles"] = {"roles": roles}
    return plugins


def _plugin_file(plugin: Any) -> dict[str, Any]:
    try:
        pdef = plugin if isinstance(plugin, PluginDef) else PluginDef.model_validate(plugin)
    except ValueError as e:
        raise InvalidArgumentError(f"Invalid entry in config.plugins: {e}") from e
    return pdef.model_dump(exclude_none=True)


def build_room_config(config: Mapping[str, Any]) -> dict[str, Any]:
    """Config handed to START_ROOM_SOURCE.

    Unless `disableDefaultPlugins` is set, the default plugin set and its
    repositories are merged in; the caller's `pluginConfig` wins per plugin and
    `hostPassword` / `adminPassword` become the `sav/roles` passwords.
    `plugins` entries are loaded by code after the room is up.
    """

    cfg = dict(config)
    plugin_config = dict(cfg.get("pluginConfig") or {})
    repositories = list(cfg.get("repositories") or [])

    if not cfg.get("disableDefaultPlugins"):
        for name, defaults in _default_plugin_config(cfg).items():
            plugin_config[name] = {**defaults, **(plugin_config.get(name) or {})}
        repositories.extend(r for r in DEFAULT_REPOSITORIES if r not in repositories)

    cfg["pluginConfig"] = plugin_config
    cfg["repositories"] = repositories
    cfg["plugins"] = [_plugin_file(p) for p in cfg.get("plugins") or []]
    return cfg


class PlaywrightRemoteContext:
    """RemoteContext over one Playwright page."""

    def __init__(self, page: Page) -> None:
        self.page = page

    async def execute(self, source: str, args: Sequence[Any]) -> Mapping[str, Any]:
        try:
            payload = await self.page.evaluate(source, list(args))
        except PlaywrightError as e:
            return {"ok": False, "payload": e.message}
        # Sources in roombridge.rpc answer with their own envelope.
        if isinstance(payload, Mapping) and "ok" in payload:
            return payload
        return {"ok": True, "payload": payload}

    def on(self, category: ContextEventCategory, handler: Callable[[Any], None]) -> None:
        if category == "pageerror":
            self.page.on("pageerror", lambda error: handler(error))
        elif category == "crash":
            self.page.on("crash", lambda _page: handler("Page crashed"))
        elif category == "console":
            async def _forward_console(msg: PWConsoleMessage) -> None:
                handler(await _console_message(msg))

            self.page.on("console", _forward_console)
        elif category == "close":
            self.page.on("close", lambda _page: handler(None))
        else:
            raise ValueError(f"Unknown context event category: {category}")


OBJECT_PREVIEW_SOURCE = "(o) => (o !== null && typeof o === 'object') ? String((o && o.stack) || Object.prototype.toString.call(o)) : null"


async def _console_message(msg: PWConsoleMessage) -> ConsoleMessage:
    text = msg.text
    if msg.type == "error":
        # Object arguments (errors mostly) only show up as "JSHandle@object" in the text.
        for arg in msg.args:
            try:
                preview = await arg.evaluate(OBJECT_PREVIEW_SOURCE)
            except PlaywrightError:
                continue
            if preview:
                text += "\n" + preview
    return ConsoleMessage(level=msg.type, text=text)


class PlaywrightHost:
    """Host process handle: one persistent browser context, tabs as RemoteContexts."""

    def __init__(
        self,
        *,
        playwright: Playwright,
        context: BrowserContext,
        viewport: Viewport,
    ) -> None:
        self._playwright = playwright
        self._context = context
        self._viewport = viewport

    async def _prepare(self, page: Page) -> PlaywrightRemoteContext:
        await page.set_viewport_size({"width": self._viewport.width, "height": self._viewport.height})
        return PlaywrightRemoteContext(page)

    async def default_context(self) -> RemoteContext:
        pages = self._context.pages
        page = pages[0] if pages else await self._context.new_page()
        return await self._prepare(page)

    async def new_context(self) -> RemoteContext:
        return await self._prepare(await self._context.new_page())

    async def close(self) -> None:
        try:
            await self._context.close()
        finally:
            await self._playwright.stop()

    async def detach(self) -> None:
        await self._playwright.stop()


class PlaywrightLauncher:
    def __init__(self, settings: HostSettings) -> None:
        self.settings = settings

    async def attach(self, port: int) -> PlaywrightHost | None:
        pw = await async_playwright().start()
        try:
            browser = await pw.chromium.connect_over_cdp(f"http://localhost:{port}")
        except PlaywrightError:
            await pw.stop()
            return None
        context = browser.contexts[0] if browser.contexts else await browser.new_context()
        return PlaywrightHost(playwright=pw, context=context, viewport=self.settings.viewport)

    async def spawn(self) -> PlaywrightHost:
        s = self.settings
        pw = await async_playwright().start()
        try:
            context = await pw.chromium.launch_persistent_context(
                str(s.user_data_dir),
                headless=s.headless,
                chromium_sandbox=not s.no_sandbox,
                viewport={"width": s.viewport.width, "height": s.viewport.height},
                args=[f"--remote-debugging-port={s.port}"],
            )
        except Exception:
            await pw.stop()
            raise
        return PlaywrightHost(playwright=pw, context=context, viewport=s.viewport)


class HeadlessRoomOpener:
    """Brings a room up (and down) inside one tab."""

    def __init__(self, *, context: PlaywrightRemoteContext, on_event: InboundHandler, settings: HostSettings) -> None:
        self._context = context
        self._on_event = on_event
        self._settings = settings
        self._exposed = False

    async def open(self, config: Mapping[str, Any], timeout: float) -> RoomInfo:
        return await asyncio.wait_for(self._open(config), timeout)

    async def _open(self, config: Mapping[str, Any]) -> RoomInfo:
        page = self._context.page
        if not self._exposed:
            await page.expose_function(INBOUND_FUNCTION, self._on_event)
            self._exposed = True

        await page.goto(self._settings.host_url)
        await page.wait_for_function("() => typeof window.HBInit === 'function'")

        hhm = config.get("hhm")
        if isinstance(hhm, Mapping) and hhm.get("content"):
            await page.add_script_tag(content=str(hhm["content"]))
        else:
            await page.add_script_tag(url=str(config.get("hhmUrl") or DEFAULT_HHM_URL))

        raw = await page.evaluate(START_ROOM_SOURCE, [to_wire(build_room_config(config)), list(ROOM_HANDLERS), INBOUND_FUNCTION])
        await page.evaluate(BRIDGE_SHIM_SOURCE)
        logger.info("Room opened: %s", raw.get("roomLink") if isinstance(raw, Mapping) else raw)
        return RoomInfo.model_validate(raw)

    async def close(self) -> None:
        await self._context.page.goto("about:blank")


def make_room_opener_factory(settings: HostSettings) -> RoomOpenerFactory:
    def _factory(context: RemoteContext, on_event: InboundHandler) -> HeadlessRoomOpener:
        if not isinstance(context, PlaywrightRemoteContext):
            raise TypeError("HeadlessRoomOpener needs a PlaywrightRemoteContext")
        return HeadlessRoomOpener(context=context, on_event=on_event, settings=settings)

    return _factory
