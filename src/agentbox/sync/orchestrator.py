"""Sync orchestration.

One ``SyncOrchestrator.sync()`` call moves through these steps::

    build manifest -> fingerprint check -(match)-> SKIPPED
                           |
                           v
    start DNS resolution (background) || push manifest items
                           |
                           v
    wait for resolution -> push rule files -> apply if changed
                           |
                           v
    run hooks -> commit fingerprint -> SYNCED

Any exception aborts the sync before the fingerprint is committed, so the
next attempt redoes every push and every hook.  A failed firewall apply is
only a warning: the container keeps its previous rules and stays usable.
"""

from __future__ import annotations

import enum
import logging
import posixpath
import sys
from pathlib import Path
from typing import Sequence, TextIO

from agentbox.config import SandboxConfig, load_config
from agentbox.sync.assets import AssetProvider, PackageAssets
from agentbox.sync.firewall import (
    FirewallResolution,
    LookupFunc,
    ResolveResult,
    render_rule_sets,
)
from agentbox.sync.fingerprint import compute_fingerprint
from agentbox.sync.hooks import HookRunner
from agentbox.sync.manifest import SyncItem, build_manifest
from agentbox.sync.runtime import ContainerError, ContainerRuntime
from agentbox.sync.settings import SyncSettings

logger = logging.getLogger(__name__)


class SyncOutcome(str, enum.Enum):
    SKIPPED = "skipped"
    SYNCED = "synced"


class StatusLine:
    """A single self-overwriting progress line on a terminal."""

    def __init__(self, stream: TextIO | None = None, enabled: bool | None = None) -> None:
        self._stream = stream or sys.stderr
        if enabled is None:
            enabled = self._stream.isatty()
        self._enabled = enabled

    def show(self, message: str) -> None:
        if self._enabled:
            self._stream.write(f"\r\033[K  \033[2m{message}\033[0m")
            self._stream.flush()

    def clear(self) -> None:
        if self._enabled:
            self._stream.write("\r\033[K")
            self._stream.flush()


class SyncOrchestrator:
    """Pushes the effective configuration into one running sandbox."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        settings: SyncSettings,
        *,
        assets: AssetProvider | None = None,
        lookup: LookupFunc | None = None,
        status: StatusLine | None = None,
    ) -> None:
        self._runtime = runtime
        self._settings = settings
        self._assets = assets or PackageAssets()
        self._lookup = lookup
        self._status = status or StatusLine(enabled=False)

    async def sync(self, container: str, workspace: Path, *, force: bool = False) -> SyncOutcome:
        """Load config for ``workspace`` and sync it into ``container``.

        Raises:
            FileNotFoundError: If no config exists globally or in the workspace.
            HookError: If an on_sync hook fails.
            ContainerError: If a container write or the fingerprint commit fails.
        """
        config = load_config(
            self._settings.global_config_path,
            self._settings.workspace_config_path(workspace),
        )
        return await self.sync_config(container, config, force=force)

    async def sync_config(
        self, container: str, config: SandboxConfig, *, force: bool = False
    ) -> SyncOutcome:
        s = self._settings
        items = build_manifest(config, self._assets, s)
        fingerprint = compute_fingerprint(items, config.firewall.allow, config.on_sync)

        if not force:
            stored = await self._runtime.read_file(container, s.fingerprint_path)
            if stored is not None and stored.strip() == fingerprint:
                logger.info("Sandbox %s is up to date (%s)", container, fingerprint[:12])
                return SyncOutcome.SKIPPED

        logger.info("Syncing sandbox %s (%d items)", container, len(items))

        resolution = FirewallResolution(
            config.firewall.allow,
            default_ports=s.default_domain_ports,
            lookup=self._lookup,
        )
        resolution.start()
        try:
            old_v4 = await self._runtime.read_file(container, s.firewall_rules_v4_path)
            old_v6 = await self._runtime.read_file(container, s.firewall_rules_v6_path)
            await self._push(container, items)
            resolved = await self._wait_for_resolution(resolution)
        finally:
            await resolution.stop()

        await self._reconcile_firewall(container, resolved, old_v4, old_v6)

        try:
            await HookRunner(
                self._runtime, s, on_start=lambda label: self._status.show(f"hook: {label}")
            ).run(container, config.on_sync)
        finally:
            self._status.clear()

        await self._commit(container, fingerprint)
        logger.info("Sandbox %s synced (%s)", container, fingerprint[:12])
        return SyncOutcome.SYNCED

    # ── Steps ────────────────────────────────────────────────────────────────

    async def _push(self, container: str, items: Sequence[SyncItem]) -> None:
        """Write items in manifest order; later items overwrite earlier ones."""
        made: set[str] = set()
        try:
            for item in items:
                self._status.show(item.dest)
                parent = posixpath.dirname(item.dest)
                if parent and parent not in made:
                    await self._runtime.mkdir(container, parent)
                    made.add(parent)
                await self._runtime.write_file(
                    container, item.data, item.dest, owner=item.owner, mode=item.mode
                )
                logger.debug("Pushed %s (%d bytes)", item.dest, len(item.data))
        finally:
            self._status.clear()

    async def _wait_for_resolution(self, resolution: FirewallResolution) -> ResolveResult:
        if resolution.done():
            return await resolution.result()
        try:
            async for domain in resolution.progress():
                self._status.show(f"resolving {domain}")
        finally:
            self._status.clear()
        return await resolution.result()

    async def _reconcile_firewall(
        self,
        container: str,
        resolved: ResolveResult,
        old_v4: str | None,
        old_v6: str | None,
    ) -> None:
        s = self._settings
        v4, v6 = render_rule_sets(resolved)
        await self._push(
            container,
            [
                SyncItem(v4.encode(), s.firewall_rules_v4_path, s.exec_mode, s.root_owner),
                SyncItem(v6.encode(), s.firewall_rules_v6_path, s.exec_mode, s.root_owner),
            ],
        )

        if v4 == old_v4 and v6 == old_v6:
            logger.debug("Firewall rules unchanged; not re-applying")
            return

        self._status.show("applying firewall rules...")
        try:
            result = await self._runtime.exec(
                container, [s.firewall_script_path], user=s.root_user
            )
        finally:
            self._status.clear()
        if not result.ok:
            logger.warning(
                "Firewall update failed (exit %d); previous rules stay in effect: %s",
                result.exit_code,
                result.output.strip(),
            )
        else:
            logger.info("Applied firewall rules to %s", container)

    async def _commit(self, container: str, fingerprint: str) -> None:
        s = self._settings
        result = await self._runtime.exec(
            container,
            ["sh", "-c", f"echo {fingerprint} > {s.fingerprint_path}"],
            user=s.root_user,
        )
        if not result.ok:
            raise ContainerError(f"write sync fingerprint: {result.output.strip()}")
