"""agentbox CLI entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import sys
from pathlib import Path

# ── Default templates for `agentbox config init` ─────────────────────────────

DEFAULT_CONFIG_YAML = """\
# Sandbox configuration
# Global: ~/.sandbox/config.yaml
# Per-workspace: <workspace>/.sandbox/config.yaml

sync:
  # Sync custom oh-my-zsh themes from host
  - src: ~/.oh-my-zsh/custom/themes/*.zsh-theme
    dest: ~/.oh-my-zsh/custom/themes/

env: {}

# Commands run inside the sandbox after every sync, in order.
# A failing hook aborts the sync; hooks re-run on the next sync, so keep
# them safe to repeat.
on_sync: []
#  - cmd: npm install -g pnpm
#    name: install pnpm
#    root: true

firewall:
  allow:
    # Claude API
    - domain: api.anthropic.com
    - domain: claude.ai
    - domain: statsig.anthropic.com
    - domain: sentry.io

    # npm / yarn / pnpm
    - domain: registry.npmjs.org
    - domain: registry.yarnpkg.com
    - domain: repo.yarnpkg.com
    - domain: registry.npmmirror.com

    # Go
    - domain: proxy.golang.org
    - domain: sum.golang.org
    - domain: storage.googleapis.com

    # Rust / crates.io
    - domain: crates.io
    - domain: static.crates.io
    - domain: index.crates.io
    - domain: static.rust-lang.org

    # Ruby gems
    - domain: rubygems.org
    - domain: api.rubygems.org
    - domain: index.rubygems.org

    # PyPI
    - domain: pypi.org
    - domain: files.pythonhosted.org

    # GitHub
    - domain: github.com
    - domain: api.github.com
    - domain: raw.githubusercontent.com
    - domain: objects.githubusercontent.com
    - domain: codeload.github.com
    - domain: pkg-containers.githubusercontent.com
    - domain: ghcr.io

    # CDNs
    - domain: cdn.jsdelivr.net
    - domain: dl-cdn.alpinelinux.org
    - domain: deb.nodesource.com

    # Cypress
    - domain: download.cypress.io
    - domain: cdn.cypress.io
"""

_DEFAULT_ZSHRC = """\
export ZSH="$HOME/.oh-my-zsh"
ZSH_THEME="{theme}"
plugins=(git npm yarn golang rust)
source $ZSH/oh-my-zsh.sh

# Files on the host in ~/.sandbox/home/bin/ are synced to ~/bin
# in the container. They need to be linux binaries to run.
export PATH="$HOME/bin:$PATH"

# Sandbox environment (managed by agentbox sync)
[ -f ~/.sandbox-env ] && source ~/.sandbox-env
"""

_ZSH_THEME_RE = re.compile(r'^ZSH_THEME="(.+)"')


def zsh_theme(host_home: Path) -> str:
    """Return the host's oh-my-zsh theme, from $ZSH_THEME or ~/.zshrc."""
    theme = os.environ.get("ZSH_THEME")
    if theme:
        return theme
    try:
        with open(host_home / ".zshrc") as f:
            for line in f:
                m = _ZSH_THEME_RE.match(line)
                if m:
                    return m.group(1)
    except OSError:
        pass
    return ""


def _config_init(settings) -> None:
    """Create the default global config and home directory."""
    config_path = settings.global_config_path
    home_dir = settings.home_sync_dir
    zshrc_path = home_dir / ".zshrc"

    config_path.parent.mkdir(parents=True, exist_ok=True)
    (home_dir / "bin").mkdir(parents=True, exist_ok=True)

    if config_path.exists():
        print(f"Already exists: {config_path}")
    else:
        config_path.write_text(DEFAULT_CONFIG_YAML)
        print(f"Created {config_path}")

    if zshrc_path.exists():
        print(f"Already exists: {zshrc_path}")
    else:
        theme = zsh_theme(Path(settings.host_home)) or "robbyrussell"
        zshrc_path.write_text(_DEFAULT_ZSHRC.format(theme=theme))
        print(f"Created {zshrc_path}")


def _config_show(settings, workspace: Path) -> None:
    import yaml

    from agentbox.config import load_config

    config = load_config(
        settings.global_config_path, settings.workspace_config_path(workspace)
    )
    print(yaml.safe_dump(config.model_dump(exclude_defaults=True), sort_keys=False), end="")


async def _sync(settings, workspace: Path, force: bool) -> int:
    from agentbox.sync.orchestrator import StatusLine, SyncOrchestrator, SyncOutcome
    from agentbox.sync.runtime import DockerRuntime
    from agentbox.workspace import container_name

    runtime = DockerRuntime(root_user=settings.root_user)
    name = container_name(workspace, settings)
    if not await runtime.is_running(name):
        print(f"Error: sandbox {name} is not running", file=sys.stderr)
        return 1

    orchestrator = SyncOrchestrator(runtime, settings, status=StatusLine())
    outcome = await orchestrator.sync(name, workspace, force=force)
    if outcome is SyncOutcome.SKIPPED:
        print("Sandbox already up to date")
    else:
        print("Sync complete")
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="agentbox",
        description="agentbox: sync configuration into sandboxed agent containers",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command")

    # agentbox sync
    sync_parser = subparsers.add_parser("sync", help="Sync files, firewall and hooks into a sandbox")
    sync_parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Workspace path (default: current directory)",
    )
    sync_parser.add_argument(
        "--force",
        action="store_true",
        help="Sync even if the sandbox fingerprint is unchanged",
    )
    sync_parser.add_argument(
        "--here",
        action="store_true",
        help="Use the exact path as the sandbox root (don't search parent directories)",
    )

    # agentbox config {init,show}
    config_parser = subparsers.add_parser("config", help="Manage sandbox configuration")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("init", help="Create the default global config and home directory")
    show_parser = config_sub.add_parser("show", help="Print the merged effective configuration")
    show_parser.add_argument(
        "path",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Workspace path (default: current directory)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    from agentbox.sync.hooks import HookError
    from agentbox.sync.runtime import ContainerError
    from agentbox.sync.settings import SyncSettings
    from agentbox.workspace import resolve_workspace

    settings = SyncSettings()

    if args.command is None or (args.command == "config" and args.config_command is None):
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "config" and args.config_command == "init":
            _config_init(settings)
            return
        if args.command == "config" and args.config_command == "show":
            _config_show(settings, resolve_workspace(args.path, settings))
            return

        workspace = resolve_workspace(args.path, settings, here=args.here)
        sys.exit(asyncio.run(_sync(settings, workspace, args.force)))
    except (FileNotFoundError, HookError, ContainerError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
