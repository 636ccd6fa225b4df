"""Sandbox sync engine.

Pushes everything a sandbox needs into its container in one pass:
- Built-in entrypoint and firewall-apply scripts
- Generated env file (with host variable references)
- The host ``~/.sandbox/home/`` tree and explicit ``sync`` rules
- iptables-restore rule-sets compiled from the firewall allowlist
- on_sync hooks, run in order with all-or-nothing semantics

A content fingerprint stored in the container lets unchanged syncs be
skipped without DNS or any file transfer.
"""

from .assets import AssetProvider, PackageAssets, StaticAssets
from .fingerprint import compute_fingerprint
from .firewall import (
    Family,
    FirewallResolution,
    ResolvedEntry,
    ResolveResult,
    generate_firewall_rules,
    render_rule_sets,
    render_rules,
    resolve_entries,
)
from .hooks import HookError, HookRunner
from .manifest import SyncItem, build_manifest, render_env_file
from .orchestrator import StatusLine, SyncOrchestrator, SyncOutcome
from .runtime import ContainerError, ContainerRuntime, DockerRuntime, ExecResult
from .settings import SyncSettings

__all__ = [
    "AssetProvider",
    "ContainerError",
    "ContainerRuntime",
    "DockerRuntime",
    "ExecResult",
    "Family",
    "FirewallResolution",
    "HookError",
    "HookRunner",
    "PackageAssets",
    "ResolveResult",
    "ResolvedEntry",
    "StaticAssets",
    "StatusLine",
    "SyncItem",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncSettings",
    "build_manifest",
    "compute_fingerprint",
    "generate_firewall_rules",
    "render_env_file",
    "render_rule_sets",
    "render_rules",
    "resolve_entries",
]
