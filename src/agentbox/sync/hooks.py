"""Post-sync hook execution.

Hooks run one at a time, in merged order (global hooks first), each as a
single ``sh -c`` inside the container.  The first failing hook stops the
run.  Hooks are re-run on every sync that is not skipped, so commands with
non-idempotent side effects (appending to a file, say) should guard
themselves.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from agentbox.config import SyncHook
from agentbox.sync.runtime import ContainerRuntime
from agentbox.sync.settings import SyncSettings

logger = logging.getLogger(__name__)


class HookError(RuntimeError):
    """An on_sync hook exited non-zero."""

    def __init__(self, label: str, exit_code: int, output: str) -> None:
        self.label = label
        self.exit_code = exit_code
        self.output = output
        message = f"on_sync hook {label!r} failed (exit {exit_code})"
        if output.strip():
            message += f"\n{output.rstrip()}"
        super().__init__(message)


class HookRunner:
    """Runs on_sync hooks sequentially with all-or-nothing semantics."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        settings: SyncSettings,
        *,
        on_start: Callable[[str], None] | None = None,
    ) -> None:
        self._runtime = runtime
        self._settings = settings
        self._on_start = on_start

    async def run(self, container: str, hooks: Sequence[SyncHook]) -> None:
        """Run every hook in order.

        Raises:
            HookError: for the first hook that fails; later hooks never run.
        """
        for hook in hooks:
            label = hook.label
            if self._on_start is not None:
                self._on_start(label)
            user = self._settings.root_user if hook.root else self._settings.agent_user
            logger.info("Running on_sync hook %r as %s", label, user)
            result = await self._runtime.exec(
                container,
                ["sh", "-c", hook.cmd],
                user=user,
                workdir=self._settings.container_home,
            )
            if not result.ok:
                raise HookError(label, result.exit_code, result.output)
