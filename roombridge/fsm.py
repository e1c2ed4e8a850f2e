from __future__ import annotations

import logging

from statemachine import State, StateMachine

logger = logging.getLogger(__name__)


class HostFSM(StateMachine):
    """Lifecycle of the single shared host process behind a registry.

    - stopped -> running when the registry spawns its host process
    - running -> stopped on explicit teardown

    Only the registry drives it; sessions never touch the host lifecycle.
    """

    stopped = State("stopped", value="stopped", initial=True)
    running = State("running", value="running")

    spawned = stopped.to(running)
    terminated = running.to(stopped)

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__()

    def on_enter_running(self) -> None:
        logger.info("Host process running on %s", self.endpoint)

    def on_exit_running(self) -> None:
        logger.info("Host process on %s stopped", self.endpoint)

    @property
    def is_running(self) -> bool:
        return self.current_state.value == "running"
