"""Command line interface for virtual branches.

Parses arguments first so ``--help`` works outside a repository, applies the
logging flags, loads ``.env`` from the repository root, initializes the
layered configuration and then dispatches to one handler per subcommand.
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import sys
import threading
from dataclasses import dataclass
from typing import Any, TextIO

from dotenv import load_dotenv

from sage_vbranch import __version__
from sage_vbranch.config import (
    ConfigManager,
    ConfigValidationError,
    create_config_manager,
    get_default_config,
    settings,
)
from sage_vbranch.core import daemon_runtime
from sage_vbranch.core.repository import Repository
from sage_vbranch.core.status_manager import DaemonStatus
from sage_vbranch.utils.logger import configure_structlog, get_logger, set_level
from sage_vbranch.vbranch import (
    BranchManager,
    BranchNotFoundError,
    Change,
    VirtualBranch,
    VirtualBranchError,
    Watcher,
    slugify_branch_name,
)
from sage_vbranch.vbranch.patch import ADDED, DELETED, build_patch, change_kind, count_lines
from sage_vbranch.vcs import GitOperationError, GitService, ShellGitService

logger = get_logger("cli")


@dataclass
class CommandContext:
    repository: Repository
    git: GitService
    manager: BranchManager
    config: ConfigManager
    out: TextIO


def _bool_flag(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _resolve_name(ctx: CommandContext, name: str | None) -> str:
    return name or ctx.manager.get_active_branch().name


def _branch_line(branch: VirtualBranch) -> str:
    marker = "*" if branch.active else " "
    stash = " [stashed]" if branch.stashed_diff else ""
    return f"{marker} {branch.name} ({len(branch.changes)} changes){stash}"


# ---- branch commands ----
def cmd_create(ctx: CommandContext, args: argparse.Namespace) -> int:
    branch = ctx.manager.create_virtual_branch(args.name, args.base)
    print(f"Created virtual branch '{branch.name}' based on '{branch.base_branch}'", file=ctx.out)
    if args.adopt:
        adopted = ctx.manager.adopt_working_tree(branch.name)
        print(f"Adopted {len(adopted)} changed file(s) into '{branch.name}'", file=ctx.out)
    return 0


def cmd_new(ctx: CommandContext, args: argparse.Namespace) -> int:
    name = slugify_branch_name(" ".join(args.description))
    branch = ctx.manager.create_virtual_branch(name)
    print(f"Created virtual branch '{branch.name}' based on '{branch.base_branch}'", file=ctx.out)
    if not ctx.git.is_clean() and ctx.manager.active_branch_name() is None:
        adopted = ctx.manager.adopt_working_tree(name)
        print(f"Adopted {len(adopted)} changed file(s)", file=ctx.out)
    else:
        ctx.manager.apply_virtual_branch(name)
    print(f"Switched to virtual branch '{name}'", file=ctx.out)
    return 0


def cmd_list(ctx: CommandContext, args: argparse.Namespace) -> int:
    branches = ctx.manager.list_virtual_branches()
    if not branches:
        print("No virtual branches found", file=ctx.out)
        return 0
    for branch in sorted(branches, key=lambda b: (not b.active, b.name)):
        print(_branch_line(branch), file=ctx.out)
    return 0


def cmd_switch(ctx: CommandContext, args: argparse.Namespace) -> int:
    try:
        branch = ctx.manager.apply_virtual_branch(args.name)
    except BranchNotFoundError:
        if not args.create:
            raise
        ctx.manager.create_virtual_branch(args.name)
        branch = ctx.manager.apply_virtual_branch(args.name)
    print(f"Switched to virtual branch '{branch.name}'", file=ctx.out)
    if branch.stashed_diff:
        print("  Branch has stashed changes; run 'stash pop' to restore them", file=ctx.out)
    return 0


def cmd_unapply(ctx: CommandContext, args: argparse.Namespace) -> int:
    branch = ctx.manager.unapply_virtual_branch(args.name)
    print(f"Unapplied virtual branch '{branch.name}'", file=ctx.out)
    if branch.stashed_diff:
        print("  Leftover changes were stashed on the branch", file=ctx.out)
    return 0


def cmd_materialize(ctx: CommandContext, args: argparse.Namespace) -> int:
    branch = ctx.manager.get_virtual_branch(args.name)
    if not args.yes and not _confirm(
        f"Materialize '{branch.name}' ({len(branch.changes)} changes) into a real branch?"
    ):
        print("Aborted", file=ctx.out)
        return 1
    message = ctx.manager.materialize_branch(args.name, args.message)
    print(f"Materialized '{args.name}': {message}", file=ctx.out)
    return 0


def cmd_status(ctx: CommandContext, args: argparse.Namespace) -> int:
    branches = ctx.manager.list_virtual_branches()
    if not branches:
        print("No virtual branches found", file=ctx.out)
    active = next((b for b in branches if b.active), None)
    if active is not None:
        print(f"Active branch: {active.name}", file=ctx.out)
        print(f"  Based on: {active.base_branch}", file=ctx.out)
        print(f"  Changes: {len(active.changes)} files", file=ctx.out)
        if active.stashed_diff:
            print("  Stashed changes: yes", file=ctx.out)
        print(f"  Last updated: {active.last_updated:%Y-%m-%d %H:%M:%S}", file=ctx.out)
    others = sorted((b for b in branches if not b.active), key=lambda b: b.name)
    if others:
        print("Other branches:", file=ctx.out)
        for branch in others:
            stash = " (has stashed changes)" if branch.stashed_diff else ""
            print(f"  {branch.name}: {len(branch.changes)} changes{stash}", file=ctx.out)

    info = daemon_runtime.daemon_info(ctx.repository)
    if info.get("status"):
        pid = f", pid {info['pid']}" if info.get("alive") else ""
        print(f"Watcher daemon: {info['status']}{pid}", file=ctx.out)
    return 0


def cmd_changes(ctx: CommandContext, args: argparse.Namespace) -> int:
    branch = ctx.manager.get_virtual_branch(_resolve_name(ctx, args.name))
    print(f"Changes in branch: {branch.name}", file=ctx.out)
    print(f"Based on: {branch.base_branch}", file=ctx.out)
    if not branch.changes:
        print("No changes in this branch", file=ctx.out)
        return 0
    symbols = {ADDED: "+", DELETED: "-"}
    for change in branch.changes:
        kind = change_kind(change.diff)
        additions, deletions = count_lines(change.diff)
        print(
            f"  {symbols.get(kind, '~')} {change.path} (+{additions} -{deletions})",
            file=ctx.out,
        )
    if branch.stashed_diff:
        print("! This branch has stashed changes", file=ctx.out)
    return 0


def cmd_diff(ctx: CommandContext, args: argparse.Namespace) -> int:
    branch = ctx.manager.get_virtual_branch(_resolve_name(ctx, args.name))
    changes: list[Change] = branch.changes
    if args.path:
        change = branch.find_change(args.path)
        if change is None:
            print(f"error: file {args.path} not found in branch {branch.name}", file=sys.stderr)
            return 1
        changes = [change]
    ctx.out.write(build_patch(changes))
    return 0


def cmd_move(ctx: CommandContext, args: argparse.Namespace) -> int:
    moved = ctx.manager.move_changes(args.source, args.target, args.paths)
    for path in moved:
        print(f"  {path}", file=ctx.out)
    print(f"Moved {len(moved)} change(s) from '{args.source}' to '{args.target}'", file=ctx.out)
    return 0 if moved else 1


def cmd_remove(ctx: CommandContext, args: argparse.Namespace) -> int:
    ctx.manager.remove_change(args.name, args.path)
    print(f"Removed {args.path} from '{args.name}'", file=ctx.out)
    return 0


# ---- stash ----
def cmd_stash_list(ctx: CommandContext, args: argparse.Namespace) -> int:
    stashed = [b for b in ctx.manager.list_virtual_branches() if b.stashed_diff]
    if not stashed:
        print("No stashed changes found", file=ctx.out)
        return 0
    for branch in sorted(stashed, key=lambda b: b.name):
        print(_branch_line(branch), file=ctx.out)
    return 0


def cmd_stash_pop(ctx: CommandContext, args: argparse.Namespace) -> int:
    name = _resolve_name(ctx, args.name)
    ctx.manager.pop_stashed_changes(name)
    print(f"Restored stashed changes of '{name}'", file=ctx.out)
    return 0


def cmd_stash_drop(ctx: CommandContext, args: argparse.Namespace) -> int:
    if not args.yes and not _confirm(f"Drop stashed changes of '{args.name}'?"):
        print("Aborted", file=ctx.out)
        return 1
    ctx.manager.drop_stashed_changes(args.name)
    print(f"Dropped stashed changes of '{args.name}'", file=ctx.out)
    return 0


# ---- config ----
def _parse_value(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _nested(key: str, value: Any) -> dict[str, Any]:
    node: Any = value
    for part in reversed(key.split(".")):
        node = {part: node}
    return node


def cmd_config_get(ctx: CommandContext, args: argparse.Namespace) -> int:
    marker = object()
    value = ctx.config.get(args.key, marker)
    if value is marker:
        print(f"error: unknown config key {args.key}", file=sys.stderr)
        return 1
    print(json.dumps(value), file=ctx.out)
    return 0


def cmd_config_set(ctx: CommandContext, args: argparse.Namespace) -> int:
    ctx.config.update(_nested(args.key, _parse_value(args.value)))
    scope = "global" if args.global_scope else "repository"
    print(f"Set {args.key} ({scope})", file=ctx.out)
    return 0


# ---- daemon ----
def cmd_daemon(ctx: CommandContext, args: argparse.Namespace) -> int:
    try:
        status = daemon_runtime.ensure_singleton(ctx.repository)
    except RuntimeError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    stop = threading.Event()

    def signal_handler(signum, frame):
        logger.info("Received signal, shutting down", signal=signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    watcher = Watcher(ctx.manager, ctx.git, ctx.repository.root, follow_store=True)
    try:
        watcher.start()
    except VirtualBranchError as exc:
        status.update(DaemonStatus.ERROR, error=str(exc))
        daemon_runtime.pid_file_path(ctx.repository).unlink(missing_ok=True)
        raise

    status.update(DaemonStatus.WATCHING)
    logger.info("Daemon watching", root=str(ctx.repository.root), pid=os.getpid())
    try:
        while not stop.wait(1.0):
            pass
    finally:
        status.update(DaemonStatus.STOPPING)
        watcher.stop()
        daemon_runtime.release(ctx.repository)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sage-vbranch",
        description=(
            "Work on several independent sets of uncommitted changes in one "
            "working tree and promote one into a real Git branch when ready."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--repo", help="Path inside the repository (default: cwd)")
    parser.add_argument(
        "--log-format",
        choices=["pretty", "json"],
        help="Log format. Overrides config and LOG_FORMAT env var.",
    )
    parser.add_argument(
        "--log-colors",
        type=_bool_flag,
        help="Enable colored logs (true/false). Overrides LOG_COLORS env var.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    p = sub.add_parser("create", help="Create a new virtual branch")
    p.add_argument("name")
    p.add_argument("-b", "--base", help="Base branch (default: current branch)")
    p.add_argument(
        "--adopt",
        action="store_true",
        help="Attribute the current uncommitted changes to the new branch",
    )
    p.set_defaults(handler=cmd_create)

    p = sub.add_parser("new", help="Create and switch to a branch named from a description")
    p.add_argument("description", nargs="+")
    p.set_defaults(handler=cmd_new)

    p = sub.add_parser("list", help="List virtual branches")
    p.set_defaults(handler=cmd_list)

    for command in ("switch", "apply"):
        p = sub.add_parser(command, help="Make a virtual branch the active one")
        p.add_argument("name")
        p.add_argument("-c", "--create", action="store_true", help="Create it if missing")
        p.set_defaults(handler=cmd_switch)

    p = sub.add_parser("unapply", help="Take a virtual branch out of the working tree")
    p.add_argument("name")
    p.set_defaults(handler=cmd_unapply)

    p = sub.add_parser("materialize", help="Turn a virtual branch into a real branch and commit")
    p.add_argument("name")
    p.add_argument("-m", "--message", help="Commit message")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(handler=cmd_materialize)

    p = sub.add_parser("status", help="Show virtual branch status")
    p.set_defaults(handler=cmd_status)

    p = sub.add_parser("changes", help="List the changes recorded in a branch")
    p.add_argument("name", nargs="?")
    p.set_defaults(handler=cmd_changes)

    p = sub.add_parser("diff", help="Print a branch's changes as a patch")
    p.add_argument("name", nargs="?")
    p.add_argument("path", nargs="?")
    p.set_defaults(handler=cmd_diff)

    p = sub.add_parser("move", help="Move changes between branches")
    p.add_argument("source")
    p.add_argument("target")
    p.add_argument("paths", nargs="+")
    p.set_defaults(handler=cmd_move)

    p = sub.add_parser("remove", help="Forget the change recorded for a path")
    p.add_argument("name")
    p.add_argument("path")
    p.set_defaults(handler=cmd_remove)

    stash = sub.add_parser("stash", help="Manage stashed changes")
    stash_sub = stash.add_subparsers(dest="stash_command", metavar="ACTION", required=True)
    p = stash_sub.add_parser("list", help="Branches holding stashed changes")
    p.set_defaults(handler=cmd_stash_list)
    p = stash_sub.add_parser("pop", help="Restore a branch's stash into the working tree")
    p.add_argument("name", nargs="?")
    p.set_defaults(handler=cmd_stash_pop)
    p = stash_sub.add_parser("drop", help="Discard a branch's stash")
    p.add_argument("name")
    p.add_argument("-y", "--yes", action="store_true")
    p.set_defaults(handler=cmd_stash_drop)

    config = sub.add_parser("config", help="Read or change configuration")
    config_sub = config.add_subparsers(dest="config_command", metavar="ACTION", required=True)
    p = config_sub.add_parser("get", help="Print a configuration value")
    p.add_argument("key")
    p.set_defaults(handler=cmd_config_get)
    p = config_sub.add_parser("set", help="Change a configuration value")
    p.add_argument("key")
    p.add_argument("value", help="JSON value; bare words are taken as strings")
    p.add_argument(
        "--global",
        dest="global_scope",
        action="store_true",
        help="Write the user-wide config instead of the repository one",
    )
    p.set_defaults(handler=cmd_config_set)

    p = sub.add_parser("daemon", help=argparse.SUPPRESS)
    p.set_defaults(handler=cmd_daemon)

    return parser


def _apply_logging_flags(args: argparse.Namespace) -> None:
    # Command-line flags take precedence over config and env vars
    if args.log_format:
        os.environ["LOG_FORMAT"] = args.log_format
    if args.log_colors is not None:
        os.environ["LOG_COLORS"] = "true" if args.log_colors else "false"
    if args.log_format or args.log_colors is not None:
        configure_structlog()


def main(argv: list[str] | None = None, out: TextIO | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _apply_logging_flags(args)
    out = out or sys.stdout

    try:
        repository = Repository.discover(args.repo)
    except VirtualBranchError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    env_file = repository.root / ".env"
    if env_file.exists():
        load_dotenv(dotenv_path=env_file, override=False)
        logger.debug("Loaded .env file", path=str(env_file))

    try:
        repository.ensure_state_dir()
        config_manager = create_config_manager(
            settings.global_config_dir(),
            local_config_path=repository.config_file,
            defaults=get_default_config(),
            write_local=not getattr(args, "global_scope", False),
        )
        config_manager.initialize()
    except ConfigValidationError as exc:
        for err in exc.errors:
            print(f"error: invalid configuration: {err}", file=sys.stderr)
        return 1
    except VirtualBranchError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    settings.attach(config_manager)
    set_level("DEBUG" if args.verbose else settings.log_level)

    git = ShellGitService(repository.root)
    ctx = CommandContext(
        repository=repository,
        git=git,
        manager=BranchManager(git, repository.state_dir),
        config=config_manager,
        out=out,
    )
    try:
        return args.handler(ctx, args)
    except (VirtualBranchError, GitOperationError, ConfigValidationError, ValueError) as exc:
        logger.debug("Command failed", command=args.command, error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
