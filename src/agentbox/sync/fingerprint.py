"""Sync fingerprint: one digest over everything a sync would push.

The container stores the fingerprint of its last successful sync; when the
freshly computed value matches, the sync is skipped.  Firewall entries count
by their configured text (not resolved addresses) so the comparison never
needs DNS.
"""

from __future__ import annotations

import hashlib
from typing import Sequence

from agentbox.config import FirewallEntry, SyncHook
from agentbox.sync.firewall import firewall_config_digest
from agentbox.sync.manifest import SyncItem


def _field(h, value: bytes) -> None:
    # Length-prefixed so adjacent fields cannot run together.
    h.update(len(value).to_bytes(8, "big"))
    h.update(value)


def compute_fingerprint(
    items: Sequence[SyncItem],
    firewall: Sequence[FirewallEntry],
    hooks: Sequence[SyncHook],
) -> str:
    """Return the hex SHA-256 fingerprint of a planned sync."""
    h = hashlib.sha256()
    for item in items:
        _field(h, item.data)
        _field(h, item.dest.encode())
        _field(h, item.mode.encode())
        _field(h, item.owner.encode())
    h.update(firewall_config_digest(firewall))
    for hook in hooks:
        _field(h, hook.cmd.encode())
        _field(h, hook.name.encode())
        _field(h, b"root" if hook.root else b"agent")
    return h.hexdigest()
