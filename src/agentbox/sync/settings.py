"""Sync engine settings.

Every fixed name and path the engine needs (container locations, execution
identities, host config root, container naming) lives on one
``SyncSettings`` record.  It is built once at process start and handed to each
component, so tests can point the engine at a temporary host tree.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field


def _default_host_root() -> str:
    return os.environ.get("AGENTBOX_HOME") or str(Path("~/.sandbox").expanduser())


class SyncSettings(BaseModel):
    """Fixed locations and identities used by a sync."""

    # ── Host side ────────────────────────────────────────────────────────────
    host_root: str = Field(default_factory=_default_host_root)
    host_home: str = Field(default_factory=lambda: str(Path.home()))
    config_filename: str = "config.yaml"
    # Workspace config lives at <workspace>/<workspace_dirname>/<config_filename>.
    workspace_dirname: str = ".sandbox"

    # ── Container side ───────────────────────────────────────────────────────
    container_home: str = "/home/agent"
    entrypoint_path: str = "/opt/entrypoint.sh"
    firewall_script_path: str = "/opt/init-firewall.sh"
    firewall_rules_v4_path: str = "/opt/sandbox-firewall-rules.sh"
    firewall_rules_v6_path: str = "/opt/sandbox-firewall-rules6.sh"
    fingerprint_path: str = "/opt/sandbox-sync.sha256"
    env_file_path: str = "/home/agent/.sandbox-env"

    # ── Identities and defaults ──────────────────────────────────────────────
    agent_user: str = "agent"
    root_user: str = "root"
    agent_owner: str = "agent:agent"
    root_owner: str = "root:root"
    default_mode: str = "0644"
    exec_mode: str = "0755"
    default_domain_ports: list[int] = Field(default_factory=lambda: [80, 443])

    # ── Runtime naming ───────────────────────────────────────────────────────
    container_prefix: str = "sandbox-"

    @property
    def global_config_path(self) -> Path:
        return Path(self.host_root) / self.config_filename

    @property
    def home_sync_dir(self) -> Path:
        """Host directory whose tree is mirrored into the container home."""
        return Path(self.host_root) / "home"

    def workspace_config_path(self, workspace: Path) -> Path:
        return workspace / self.workspace_dirname / self.config_filename
