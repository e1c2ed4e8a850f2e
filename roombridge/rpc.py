"""Single multiplexed call/response entry point into a RemoteContext.

Every bridge operation becomes `invoke(context, method, *args)`: the method name and
its wire-encoded arguments are handed to one remote dispatch function, which answers
with a `{ok, payload}` envelope. `ok: false` is raised as `RemoteExecutionError`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ValidationError

from roombridge.contracts import RemoteContext
from roombridge.errors import InvalidArgumentError, RemoteExecutionError
from roombridge.models import CallEnvelope

logger = logging.getLogger(__name__)


class RemoteMethod(StrEnum):
    call_room = "callRoom"
    get_plugins = "getPlugins"
    get_plugin = "getPlugin"
    enable_plugin = "enablePlugin"
    disable_plugin = "disablePlugin"
    has_plugin = "hasPlugin"
    add_plugin = "addPlugin"
    get_dependent_plugins = "getDependentPlugins"
    add_repository = "addRepository"
    get_repositories = "getRepositories"
    clear_repositories = "clearRepositories"
    set_plugin_config = "setPluginConfig"
    get_plugin_config = "getPluginConfig"
    get_plugin_configs = "getPluginConfigs"
    kick = "kick"
    ban = "ban"
    unban = "unban"
    banned_players = "bannedPlayers"


# Remote dispatcher: looks the method up on the bridge object installed by the room
# opener and always answers with an envelope, never a throw.
DISPATCH_SOURCE = """
async ([method, args]) => {
  try {
    const bridge = window.hroomie;
    if (!bridge || typeof bridge[method] !== 'function') {
      return { ok: false, payload: `Unknown remote method: ${method}` };
    }
    const result = await bridge[method](...args);
    return { ok: true, payload: result === undefined ? null : result };
  } catch (err) {
    return { ok: false, payload: String((err && err.message) || err) };
  }
}
"""

EVALUATE_SOURCE = """
async ([source]) => {
  try {
    const result = await (0, eval)(source);
    return { ok: true, payload: result === undefined ? null : result };
  } catch (err) {
    return { ok: false, payload: String((err && err.message) || err) };
  }
}
"""


def to_wire(value: Any) -> Any:
    """Encode a value into the closed set that survives the serialization boundary.

    Allowed: None, bool, int, float, str, sequences (list/tuple) and str-keyed
    mappings of allowed values; pydantic models are dumped by alias.
    """

    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(value, (list, tuple)):
        return [to_wire(v) for v in value]
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise InvalidArgumentError(f"Mapping keys must be strings, got {type(k).__name__}")
            out[k] = to_wire(v)
        return out
    raise InvalidArgumentError(f"Value of type {type(value).__name__} cannot cross the remote boundary")


def unwrap(raw: Any, *, method: str) -> Any:
    try:
        envelope = CallEnvelope.model_validate(raw)
    except ValidationError as e:
        raise RemoteExecutionError(f"Malformed remote response: {raw!r}", method=method) from e
    if not envelope.ok:
        raise RemoteExecutionError(str(envelope.payload), method=method)
    return envelope.payload


async def invoke(context: RemoteContext, method: RemoteMethod | str, *args: Any) -> Any:
    name = str(method)
    wire_args = [to_wire(a) for a in args]
    logger.debug("invoke %s args=%s", name, wire_args)
    raw = await context.execute(DISPATCH_SOURCE, [name, wire_args])
    return unwrap(raw, method=name)


async def evaluate(context: RemoteContext, source: str) -> Any:
    logger.debug("evaluate %s", source)
    raw = await context.execute(EVALUATE_SOURCE, [source])
    return unwrap(raw, method="evaluate")
