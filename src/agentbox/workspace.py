"""Workspace resolution and sandbox naming."""

from __future__ import annotations

from pathlib import Path

from agentbox.sync.settings import SyncSettings


def resolve_workspace(path: Path, settings: SyncSettings, *, here: bool = False) -> Path:
    """Return the sandbox root for ``path``.

    The root is the nearest ancestor (``path`` included) holding a workspace
    config directory.  With ``here=True``, or when no ancestor has one, the
    path itself is the root.
    """
    path = path.expanduser().resolve()
    if here:
        return path
    host_root = Path(settings.host_root).expanduser().resolve()
    for candidate in (path, *path.parents):
        marker = candidate / settings.workspace_dirname
        # ~/.sandbox is the global config root, not a workspace marker.
        if marker.is_dir() and marker.resolve() != host_root:
            return candidate
    return path


def container_name(workspace: Path, settings: SyncSettings) -> str:
    return f"{settings.container_prefix}{workspace.name}"
