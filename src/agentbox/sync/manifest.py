"""Sync manifest construction.

A manifest is the ordered list of ``SyncItem`` records pushed into the
container on every sync.  Items come from four producers, appended in this
precedence order (a later item for the same destination wins, because items
are written in order):

1. Built-in assets (entrypoint + firewall-apply script), root-owned, 0755.
2. The generated env file, one ``export NAME='value'`` line per variable.
3. Every regular file under the host home sync directory.
4. Explicit ``sync`` rules from the effective config.

Unreadable sources are logged and skipped; they never abort the build.
"""

from __future__ import annotations

import glob
import logging
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Protocol

from agentbox.config import SandboxConfig, SyncRule
from agentbox.sync.assets import ENTRYPOINT, FIREWALL_SCRIPT, AssetProvider
from agentbox.sync.settings import SyncSettings

logger = logging.getLogger(__name__)

# Env values starting with this prefix name a host environment variable.
HOST_ENV_PREFIX = "$"


@dataclass(frozen=True)
class SyncItem:
    """One file to place in the container."""

    data: bytes
    dest: str
    mode: str
    owner: str


# ── Helpers ──────────────────────────────────────────────────────────────────


def shell_quote(value: str) -> str:
    """Single-quote a value for POSIX sh."""
    return "'" + value.replace("'", "'\"'\"'") + "'"


def expand_host_tilde(path: str, host_home: str) -> str:
    if path == "~":
        return host_home
    if path.startswith("~/"):
        return os.path.join(host_home, path[2:])
    return path


def expand_container_tilde(path: str, container_home: str) -> str:
    if path == "~":
        return container_home
    if path.startswith("~/"):
        return container_home.rstrip("/") + "/" + path[2:]
    return path


def render_env_file(
    env: Mapping[str, str], environ: Mapping[str, str] | None = None
) -> bytes | None:
    """Render the sandbox env file, or None when there is nothing to export.

    Values starting with ``$`` are looked up in ``environ`` (the host
    environment by default); unset or empty host variables drop the entry.
    """
    if environ is None:
        environ = os.environ

    lines: list[str] = []
    for name in sorted(env):
        value = env[name]
        if value.startswith(HOST_ENV_PREFIX):
            host_var = value[len(HOST_ENV_PREFIX):]
            value = environ.get(host_var, "")
            if not value:
                logger.debug("Host variable %s is unset; omitting %s", host_var, name)
                continue
        lines.append(f"export {name}={shell_quote(value)}\n")

    if not lines:
        return None
    return "".join(lines).encode()


# ── Item producers ───────────────────────────────────────────────────────────


class ItemSource(Protocol):
    """Anything that contributes items to the manifest."""

    def items(self) -> Iterable[SyncItem]:
        ...


class BuiltinAssetSource:
    """Entrypoint and firewall-apply scripts."""

    def __init__(self, assets: AssetProvider, settings: SyncSettings) -> None:
        self._assets = assets
        self._settings = settings

    def items(self) -> Iterable[SyncItem]:
        s = self._settings
        for name, dest in (
            (ENTRYPOINT, s.entrypoint_path),
            (FIREWALL_SCRIPT, s.firewall_script_path),
        ):
            yield SyncItem(
                data=self._assets.read(name),
                dest=dest,
                mode=s.exec_mode,
                owner=s.root_owner,
            )


class EnvFileSource:
    """The generated ``export`` file for configured environment variables."""

    def __init__(
        self,
        env: Mapping[str, str],
        settings: SyncSettings,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._env = env
        self._settings = settings
        self._environ = environ

    def items(self) -> Iterable[SyncItem]:
        data = render_env_file(self._env, self._environ)
        if data is None:
            return
        yield SyncItem(
            data=data,
            dest=self._settings.env_file_path,
            mode=self._settings.default_mode,
            owner=self._settings.agent_owner,
        )


class HomeDirSource:
    """Mirror of the host home sync directory into the container home."""

    def __init__(self, root: Path, settings: SyncSettings) -> None:
        self._root = root
        self._settings = settings

    def items(self) -> Iterable[SyncItem]:
        if not self._root.is_dir():
            return
        s = self._settings
        for dirpath, dirnames, filenames in os.walk(self._root):
            dirnames.sort()
            for filename in sorted(filenames):
                path = Path(dirpath) / filename
                if not path.is_file():
                    continue
                rel = path.relative_to(self._root).as_posix()
                try:
                    data = path.read_bytes()
                except OSError as e:
                    logger.warning("Cannot read %s: %s", path, e)
                    continue
                yield SyncItem(
                    data=data,
                    dest=s.container_home.rstrip("/") + "/" + rel,
                    mode=s.exec_mode if rel.startswith("bin/") else s.default_mode,
                    owner=s.agent_owner,
                )


class SyncRuleSource:
    """Files named by explicit ``sync`` rules, with glob expansion.

    Globs match dotfiles too.  A ``dest`` ending in ``/`` is a directory and
    every match lands under it by base name, as does every match of a glob
    with several matches.  Otherwise the single source maps to ``dest``.
    """

    def __init__(self, rules: list[SyncRule], settings: SyncSettings) -> None:
        self._rules = rules
        self._settings = settings

    def items(self) -> Iterable[SyncItem]:
        s = self._settings
        for rule in self._rules:
            mode = rule.mode or s.default_mode
            owner = rule.owner or s.agent_owner
            src = expand_host_tilde(rule.src, s.host_home)
            dest = expand_container_tilde(rule.dest, s.container_home)

            matches = []
            if glob.has_magic(src):
                matches = sorted(glob.glob(src, include_hidden=True))
            if not matches:
                matches = [src]
            into_dir = dest.endswith("/") or len(matches) > 1

            for match in matches:
                try:
                    data = Path(match).read_bytes()
                except OSError as e:
                    logger.warning("Cannot read %s: %s", match, e)
                    continue
                target = dest
                if into_dir:
                    target = posixpath.join(dest, os.path.basename(match))
                yield SyncItem(data=data, dest=target, mode=mode, owner=owner)


# ── Manifest ─────────────────────────────────────────────────────────────────


def build_manifest(
    config: SandboxConfig,
    assets: AssetProvider,
    settings: SyncSettings,
    *,
    environ: Mapping[str, str] | None = None,
) -> list[SyncItem]:
    """Build the ordered list of non-firewall items for one sync."""
    sources: list[ItemSource] = [
        BuiltinAssetSource(assets, settings),
        EnvFileSource(config.env, settings, environ),
        HomeDirSource(settings.home_sync_dir, settings),
        SyncRuleSource(config.sync, settings),
    ]
    items: list[SyncItem] = []
    for source in sources:
        items.extend(source.items())
    logger.debug("Built sync manifest with %d items", len(items))
    return items
