"""Tests for the docker CLI runtime (subprocess calls mocked)."""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, patch

import pytest

from agentbox.sync.runtime import ContainerError, DockerRuntime, ExecResult


def _fake_run(responses: dict[str, tuple[int, str]] | None = None):
    """AsyncMock for ``_run``; the first response whose key appears in the command line wins."""
    responses = responses or {}
    staged: dict[str, bytes] = {}

    async def run(*args):
        if args[1] == "cp":
            with open(args[2], "rb") as fh:
                staged[args[3]] = fh.read()
        line = " ".join(args)
        for needle, response in responses.items():
            if needle in line:
                return response
        return 0, ""

    mock = AsyncMock(side_effect=run)
    mock.staged = staged
    return mock


class TestExec:
    async def test_builds_docker_exec(self):
        run = _fake_run({"cat": (0, "hello\n")})
        with patch("agentbox.sync.runtime._run", run):
            result = await DockerRuntime().exec(
                "box", ["cat", "/etc/hostname"], user="agent", workdir="/home/agent"
            )
        assert result == ExecResult(exit_code=0, output="hello\n")
        run.assert_awaited_once_with(
            "docker", "exec", "-u", "agent", "-w", "/home/agent", "box", "cat", "/etc/hostname"
        )

    async def test_without_user_or_workdir(self):
        run = _fake_run()
        with patch("agentbox.sync.runtime._run", run):
            await DockerRuntime(docker="podman").exec("box", ["true"])
        run.assert_awaited_once_with("podman", "exec", "box", "true")


class TestIsRunning:
    async def test_running(self):
        run = _fake_run({"inspect": (0, "true\n")})
        with patch("agentbox.sync.runtime._run", run):
            assert await DockerRuntime().is_running("box")

    async def test_stopped_or_missing(self):
        with patch("agentbox.sync.runtime._run", _fake_run({"inspect": (0, "false\n")})):
            assert not await DockerRuntime().is_running("box")
        with patch("agentbox.sync.runtime._run", _fake_run({"inspect": (1, "No such object")})):
            assert not await DockerRuntime().is_running("box")


class TestWriteFile:
    async def test_copies_then_sets_owner_and_mode(self):
        run = _fake_run()
        with patch("agentbox.sync.runtime._run", run):
            await DockerRuntime().write_file(
                "box", b"data", "/home/agent/.zshrc", owner="agent:agent", mode="0644"
            )

        calls = [c.args for c in run.await_args_list]
        assert calls[0][:2] == ("docker", "cp")
        assert calls[0][3] == "box:/home/agent/.zshrc"
        assert calls[1] == ("docker", "exec", "-u", "root", "box", "chown", "agent:agent", "/home/agent/.zshrc")
        assert calls[2] == ("docker", "exec", "-u", "root", "box", "chmod", "0644", "/home/agent/.zshrc")
        assert run.staged["box:/home/agent/.zshrc"] == b"data"
        # The staging file is gone afterwards.
        assert not os.path.exists(calls[0][2])

    async def test_copy_failure(self):
        run = _fake_run({"cp": (1, "no such container")})
        with patch("agentbox.sync.runtime._run", run):
            with pytest.raises(ContainerError, match="no such container"):
                await DockerRuntime().write_file("box", b"x", "/a", owner="root:root", mode="0644")
        assert len(run.await_args_list) == 1

    async def test_chmod_failure(self):
        run = _fake_run({"chmod": (1, "Operation not permitted")})
        with patch("agentbox.sync.runtime._run", run):
            with pytest.raises(ContainerError, match="chmod"):
                await DockerRuntime().write_file("box", b"x", "/a", owner="root:root", mode="0644")


class TestMkdirAndRead:
    async def test_mkdir_as_root(self):
        run = _fake_run()
        with patch("agentbox.sync.runtime._run", run):
            await DockerRuntime().mkdir("box", "/home/agent/.config")
        run.assert_awaited_once_with(
            "docker", "exec", "-u", "root", "box", "mkdir", "-p", "/home/agent/.config"
        )

    async def test_read_file(self):
        with patch("agentbox.sync.runtime._run", _fake_run({"cat": (0, "abc\n")})):
            assert await DockerRuntime().read_file("box", "/opt/x") == "abc\n"

    async def test_read_missing_file(self):
        with patch("agentbox.sync.runtime._run", _fake_run({"cat": (1, "No such file")})):
            assert await DockerRuntime().read_file("box", "/opt/x") is None
