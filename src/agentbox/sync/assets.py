"""Built-in assets shipped into every sandbox.

The entrypoint and firewall-apply scripts are bundled as package data.  The
manifest builder only sees the ``AssetProvider`` protocol, so tests can hand
it a plain dict of fixture bytes instead.
"""

from __future__ import annotations

from importlib import resources
from typing import Protocol

ENTRYPOINT = "entrypoint.sh"
FIREWALL_SCRIPT = "init-firewall.sh"


class AssetProvider(Protocol):
    """Read-only lookup of bundled assets by name."""

    def read(self, name: str) -> bytes:
        """Return the asset's bytes.  Raises KeyError if unknown."""
        ...


class PackageAssets:
    """Assets read from ``agentbox/sync/assets/``."""

    def __init__(self, package: str = "agentbox.sync") -> None:
        self._root = resources.files(package) / "assets"

    def read(self, name: str) -> bytes:
        path = self._root / name
        if not path.is_file():
            raise KeyError(name)
        return path.read_bytes()


class StaticAssets:
    """Dict-backed provider."""

    def __init__(self, assets: dict[str, bytes]) -> None:
        self._assets = dict(assets)

    def read(self, name: str) -> bytes:
        return self._assets[name]
