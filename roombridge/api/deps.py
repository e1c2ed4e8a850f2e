from __future__ import annotations

from fastapi import Request

from roombridge.registry import SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        raise RuntimeError("Session registry not initialized. It is created at startup.")
    return registry
