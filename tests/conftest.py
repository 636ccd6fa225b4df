"""Shared fixtures for agentbox tests.

Provides:
- ``SyncSettings`` pointing at a temporary host tree
- Fixture assets in place of the bundled scripts
- ``FakeRuntime``: an in-memory container that records every call
- A stub DNS lookup
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from agentbox.sync.assets import ENTRYPOINT, FIREWALL_SCRIPT, StaticAssets
from agentbox.sync.runtime import ContainerError, ExecResult
from agentbox.sync.settings import SyncSettings

_COMMIT_RE = re.compile(r"^echo (\S+) > (\S+)$")


# ── Settings / assets ────────────────────────────────────────────────────────


@pytest.fixture
def host_home(tmp_path: Path) -> Path:
    home = tmp_path / "home" / "user"
    home.mkdir(parents=True)
    return home


@pytest.fixture
def settings(tmp_path: Path, host_home: Path) -> SyncSettings:
    return SyncSettings(
        host_root=str(host_home / ".sandbox"),
        host_home=str(host_home),
    )


@pytest.fixture
def assets() -> StaticAssets:
    return StaticAssets(
        {
            ENTRYPOINT: b"#!/bin/sh\necho entry\n",
            FIREWALL_SCRIPT: b"#!/bin/sh\necho firewall\n",
        }
    )


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "projects" / "demo"
    (ws / ".sandbox").mkdir(parents=True)
    return ws


# ── Fake container runtime ───────────────────────────────────────────────────


@dataclass
class Call:
    op: str
    args: tuple
    user: str | None = None
    workdir: str | None = None


@dataclass
class FakeRuntime:
    """In-memory stand-in for a running container."""

    running: bool = True
    files: dict[str, bytes] = field(default_factory=dict)
    owners: dict[str, str] = field(default_factory=dict)
    modes: dict[str, str] = field(default_factory=dict)
    dirs: set[str] = field(default_factory=set)
    calls: list[Call] = field(default_factory=list)
    # Shell command text (or argv[0]) -> result for exec().
    results: dict[str, ExecResult] = field(default_factory=dict)
    fail_writes: set[str] = field(default_factory=set)

    async def is_running(self, container: str) -> bool:
        self.calls.append(Call("is_running", (container,)))
        return self.running

    async def mkdir(self, container: str, path: str) -> None:
        self.calls.append(Call("mkdir", (path,)))
        self.dirs.add(path)

    async def write_file(
        self, container: str, data: bytes, dest: str, *, owner: str, mode: str
    ) -> None:
        self.calls.append(Call("write", (dest,)))
        # Yield like a real docker cp would, so background tasks get to run.
        await asyncio.sleep(0)
        if dest in self.fail_writes:
            raise ContainerError(f"copy to {container}:{dest} failed")
        self.files[dest] = data
        self.owners[dest] = owner
        self.modes[dest] = mode

    async def read_file(self, container: str, path: str) -> str | None:
        self.calls.append(Call("read", (path,)))
        data = self.files.get(path)
        return None if data is None else data.decode()

    async def exec(
        self,
        container: str,
        argv: list[str],
        *,
        user: str | None = None,
        workdir: str | None = None,
    ) -> ExecResult:
        self.calls.append(Call("exec", tuple(argv), user=user, workdir=workdir))
        key = argv[2] if argv[:2] == ["sh", "-c"] else argv[0]
        if key in self.results:
            return self.results[key]
        m = _COMMIT_RE.match(key)
        if m:
            self.files[m.group(2)] = (m.group(1) + "\n").encode()
        return ExecResult(exit_code=0, output="")

    # Helpers for assertions

    def ops(self, op: str) -> list[Call]:
        return [c for c in self.calls if c.op == op]

    def written(self) -> list[str]:
        return [c.args[0] for c in self.ops("write")]

    def shell_commands(self) -> list[str]:
        return [c.args[2] for c in self.ops("exec") if c.args[:2] == ("sh", "-c")]


@pytest.fixture
def runtime() -> FakeRuntime:
    return FakeRuntime()


# ── DNS stub ─────────────────────────────────────────────────────────────────


class FakeDNS:
    """Async lookup returning canned answers; unknown names fail."""

    def __init__(self, answers: dict[str, list[str]] | None = None) -> None:
        self.answers = answers or {}
        self.queries: list[str] = []

    async def __call__(self, domain: str) -> list[str]:
        self.queries.append(domain)
        if domain not in self.answers:
            raise OSError(f"[Errno -2] Name or service not known: {domain}")
        return list(self.answers[domain])


@pytest.fixture
def dns() -> FakeDNS:
    return FakeDNS({"example.com": ["203.0.113.5", "2001:db8::5"]})
