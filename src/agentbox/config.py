"""Configuration loading for agentbox.

Reads the global ``~/.sandbox/config.yaml`` and the workspace-scoped
``<workspace>/.sandbox/config.yaml`` and merges them into one effective
configuration.  Either document may be missing; a document that cannot be
parsed is reported and treated as empty so the rest of the sync still runs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)


# ── Config Models ────────────────────────────────────────────────────────────


class SyncRule(BaseModel):
    """A host file (or glob) to place inside the container.

    ``dest`` is the identity key when layers are merged.  ``mode`` and
    ``owner`` are left unset here; the manifest builder applies defaults.
    """

    src: str
    dest: str
    mode: str | None = None
    owner: str | None = None

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v: Any) -> Any:
        # YAML 1.1 reads an unquoted 0644 as the octal integer 420.
        if isinstance(v, int) and not isinstance(v, bool):
            return f"{v:04o}"
        return v


class FirewallEntry(BaseModel):
    """One allowlist entry: exactly one of ``domain`` or ``cidr``."""

    domain: str = ""
    cidr: str = ""
    ports: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def _domain_xor_cidr(self) -> "FirewallEntry":
        has_domain = bool(self.domain)
        has_cidr = bool(self.cidr)
        if has_domain and has_cidr:
            raise ValueError("firewall entry has both domain and cidr")
        if not has_domain and not has_cidr:
            raise ValueError("firewall entry has neither domain nor cidr")
        return self

    @property
    def target(self) -> str:
        return self.domain or self.cidr


class FirewallConfig(BaseModel):
    allow: list[FirewallEntry] = Field(default_factory=list)

    @field_validator("allow", mode="before")
    @classmethod
    def _drop_invalid_entries(cls, v: Any) -> Any:
        """Filter entries that break the domain-XOR-cidr rule, with a warning."""
        if not isinstance(v, list):
            return v
        valid: list[FirewallEntry] = []
        for raw in v:
            try:
                valid.append(FirewallEntry.model_validate(raw))
            except ValidationError as e:
                reason = "; ".join(err["msg"].removeprefix("Value error, ") for err in e.errors())
                logger.warning("Skipping firewall entry %r: %s", raw, reason)
        return valid


class SyncHook(BaseModel):
    """A shell command run inside the container after files are pushed."""

    cmd: str
    name: str = ""
    root: bool = False

    @property
    def label(self) -> str:
        return self.name or self.cmd


class SandboxConfig(BaseModel):
    """Effective sandbox configuration (one document, or a merge of two)."""

    sync: list[SyncRule] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    on_sync: list[SyncHook] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _drop_null_sections(cls, data: Any) -> Any:
        # An empty YAML section (``env:``) arrives as None.
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @field_validator("env", mode="before")
    @classmethod
    def _stringify_env(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        result: dict[str, str] = {}
        for key, value in v.items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif value is None:
                value = ""
            result[str(key)] = str(value)
        return result

    @field_validator("on_sync", mode="before")
    @classmethod
    def _drop_blank_hooks(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        return [
            h for h in v
            if not (isinstance(h, dict) and not str(h.get("cmd") or "").strip())
        ]


# ── Merge ────────────────────────────────────────────────────────────────────


def merge_config(base: SandboxConfig, override: SandboxConfig) -> SandboxConfig:
    """Merge a workspace config (override) on top of the global one (base).

    - env: per-key override, base-only keys kept.
    - sync: keyed by ``dest``; an override rule replaces the base rule in
      the position where that dest first appeared, new dests are appended.
    - firewall.allow and on_sync: concatenated, base first, no dedup.
    """
    env = dict(base.env)
    env.update(override.env)

    by_dest: dict[str, SyncRule] = {}
    for rule in [*base.sync, *override.sync]:
        by_dest[rule.dest] = rule  # dict keeps first-insertion order

    return SandboxConfig(
        sync=list(by_dest.values()),
        env=env,
        firewall=FirewallConfig(allow=[*base.firewall.allow, *override.firewall.allow]),
        on_sync=[*base.on_sync, *override.on_sync],
    )


# ── Config Loader ────────────────────────────────────────────────────────────


def parse_config_file(path: Path) -> SandboxConfig | None:
    """Parse one config document.

    Returns None if the file does not exist.  A malformed document is
    logged as a warning and returned as an empty config.
    """
    try:
        text = path.read_text()
    except FileNotFoundError:
        return None

    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        logger.warning("Failed to parse %s: %s", path, e)
        return SandboxConfig()

    if not isinstance(raw, dict):
        logger.warning("Failed to parse %s: top level must be a mapping", path)
        return SandboxConfig()

    try:
        return SandboxConfig.model_validate(raw)
    except ValidationError as e:
        logger.warning("Failed to parse %s: %s", path, e)
        return SandboxConfig()


def load_config(global_path: Path, workspace_path: Path) -> SandboxConfig:
    """Load and merge the global and workspace configuration documents.

    Raises:
        FileNotFoundError: If neither document exists.
    """
    global_cfg = parse_config_file(global_path)
    workspace_cfg = parse_config_file(workspace_path)

    if global_cfg is None and workspace_cfg is None:
        raise FileNotFoundError(
            "no sandbox config found; run 'agentbox config init' to create one"
        )

    if global_cfg is None:
        logger.debug("Using workspace config only: %s", workspace_path)
        return workspace_cfg
    if workspace_cfg is None:
        logger.debug("Using global config only: %s", global_path)
        return global_cfg

    merged = merge_config(global_cfg, workspace_cfg)
    logger.debug(
        "Merged config: %d sync rules, %d env vars, %d firewall entries, %d hooks",
        len(merged.sync),
        len(merged.env),
        len(merged.firewall.allow),
        len(merged.on_sync),
    )
    return merged
