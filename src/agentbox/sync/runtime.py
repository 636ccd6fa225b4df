"""Container runtime used by the sync engine.

``ContainerRuntime`` is the capability set the orchestrator needs; the
``DockerRuntime`` implementation drives the ``docker`` CLI through asyncio
subprocesses.  Each call suspends the orchestrator until docker returns.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class ContainerError(RuntimeError):
    """A container operation (copy, mkdir, chown, chmod, exec) failed."""


@dataclass
class ExecResult:
    exit_code: int
    output: str  # stdout and stderr combined

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class ContainerRuntime(Protocol):
    """What the sync engine needs from a container runtime."""

    async def is_running(self, container: str) -> bool:
        ...

    async def mkdir(self, container: str, path: str) -> None:
        """Create ``path`` (and parents) as root."""
        ...

    async def write_file(
        self, container: str, data: bytes, dest: str, *, owner: str, mode: str
    ) -> None:
        """Write bytes to ``dest`` and set its owner and mode."""
        ...

    async def read_file(self, container: str, path: str) -> str | None:
        """Return a small file's contents, or None if it cannot be read."""
        ...

    async def exec(
        self,
        container: str,
        argv: list[str],
        *,
        user: str | None = None,
        workdir: str | None = None,
    ) -> ExecResult:
        """Run a command inside the container, capturing combined output."""
        ...


async def _run(*args: str) -> tuple[int, str]:
    """Run a command and return (returncode, combined output)."""
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    stdout, _ = await proc.communicate()
    return proc.returncode, stdout.decode(errors="replace")


class DockerRuntime:
    """``ContainerRuntime`` backed by the docker CLI."""

    def __init__(self, docker: str = "docker", root_user: str = "root") -> None:
        self._docker = docker
        self._root = root_user

    async def is_running(self, container: str) -> bool:
        rc, out = await _run(
            self._docker, "inspect", "-f", "{{.State.Running}}", container
        )
        return rc == 0 and out.strip() == "true"

    async def exec(
        self,
        container: str,
        argv: list[str],
        *,
        user: str | None = None,
        workdir: str | None = None,
    ) -> ExecResult:
        cmd = [self._docker, "exec"]
        if user:
            cmd += ["-u", user]
        if workdir:
            cmd += ["-w", workdir]
        cmd += [container, *argv]
        rc, out = await _run(*cmd)
        return ExecResult(exit_code=rc, output=out)

    async def _exec_root(self, container: str, *argv: str) -> None:
        result = await self.exec(container, list(argv), user=self._root)
        if not result.ok:
            raise ContainerError(
                f"{' '.join(argv)} in {container} failed (exit {result.exit_code}): "
                f"{result.output.strip()}"
            )

    async def mkdir(self, container: str, path: str) -> None:
        await self._exec_root(container, "mkdir", "-p", path)

    async def write_file(
        self, container: str, data: bytes, dest: str, *, owner: str, mode: str
    ) -> None:
        # docker cp takes a host path, so stage the bytes in a temp file.
        fd, tmp_path = tempfile.mkstemp(prefix="agentbox-sync-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            rc, out = await _run(self._docker, "cp", tmp_path, f"{container}:{dest}")
            if rc != 0:
                raise ContainerError(f"copy to {container}:{dest} failed: {out.strip()}")
        finally:
            os.unlink(tmp_path)

        await self._exec_root(container, "chown", owner, dest)
        await self._exec_root(container, "chmod", mode, dest)

    async def read_file(self, container: str, path: str) -> str | None:
        result = await self.exec(container, ["cat", path])
        if not result.ok:
            logger.debug("Cannot read %s in %s: %s", path, container, result.output.strip())
            return None
        return result.output
