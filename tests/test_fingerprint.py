"""Tests for the sync fingerprint."""

from __future__ import annotations

from agentbox.config import FirewallEntry, SyncHook
from agentbox.sync.fingerprint import compute_fingerprint
from agentbox.sync.manifest import SyncItem

ITEMS = [
    SyncItem(b"#!/bin/sh\n", "/opt/entrypoint.sh", "0755", "root:root"),
    SyncItem(b"export A='1'\n", "/home/agent/.sandbox-env", "0644", "agent:agent"),
]
FIREWALL = [FirewallEntry(domain="github.com"), FirewallEntry(cidr="10.0.0.0/8", ports=[443])]
HOOKS = [SyncHook(cmd="npm install", name="deps")]


class TestComputeFingerprint:
    def test_stable(self):
        a = compute_fingerprint(ITEMS, FIREWALL, HOOKS)
        b = compute_fingerprint(list(ITEMS), list(FIREWALL), list(HOOKS))
        assert a == b
        assert len(a) == 64

    def test_hook_command_change(self):
        changed = [SyncHook(cmd="npm ci", name="deps")]
        assert compute_fingerprint(ITEMS, FIREWALL, HOOKS) != compute_fingerprint(
            ITEMS, FIREWALL, changed
        )

    def test_hook_label_and_privilege_change(self):
        base = compute_fingerprint(ITEMS, FIREWALL, HOOKS)
        assert base != compute_fingerprint(ITEMS, FIREWALL, [SyncHook(cmd="npm install")])
        assert base != compute_fingerprint(
            ITEMS, FIREWALL, [SyncHook(cmd="npm install", name="deps", root=True)]
        )

    def test_item_content_and_dest_change(self):
        base = compute_fingerprint(ITEMS, FIREWALL, HOOKS)
        content = [ITEMS[0], SyncItem(b"export A='2'\n", ITEMS[1].dest, "0644", "agent:agent")]
        dest = [ITEMS[0], SyncItem(ITEMS[1].data, "/home/agent/.other", "0644", "agent:agent")]
        assert compute_fingerprint(content, FIREWALL, HOOKS) != base
        assert compute_fingerprint(dest, FIREWALL, HOOKS) != base

    def test_item_mode_change(self):
        base = compute_fingerprint(ITEMS, FIREWALL, HOOKS)
        moded = [ITEMS[0], SyncItem(ITEMS[1].data, ITEMS[1].dest, "0600", "agent:agent")]
        assert compute_fingerprint(moded, FIREWALL, HOOKS) != base

    def test_firewall_change(self):
        base = compute_fingerprint(ITEMS, FIREWALL, HOOKS)
        more = [*FIREWALL, FirewallEntry(domain="pypi.org")]
        assert compute_fingerprint(ITEMS, more, HOOKS) != base

    def test_field_boundaries(self):
        a = [SyncItem(b"ab", "/c", "0644", "agent:agent")]
        b = [SyncItem(b"a", "b/c", "0644", "agent:agent")]
        assert compute_fingerprint(a, [], []) != compute_fingerprint(b, [], [])
