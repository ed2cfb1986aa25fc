from __future__ import annotations

import argparse
import os
import sys
from typing import Callable, List, Optional

from engrams.core.config import EngramsFsPaths, load_config
from engrams.core.errors import EngramError
from engrams.core.logger import setup_logging
from engrams.core.registry import EngramManager
from engrams.core.registry import cli as render
from engrams.core.registry.file_tree import generate_file_tree
from engrams.core.repo_url import find_project_root


def _emit(lines: List[str], *, err: bool = False) -> None:
    for line in lines:
        print(line, file=sys.stderr if err else sys.stdout)


def _fail(msg: str) -> int:
    print(f"fail: {msg}", file=sys.stderr)
    return 1


def _cmd_add(mgr: EngramManager, args: argparse.Namespace) -> int:
    res = mgr.add_module(
        args.repo,
        name=args.name,
        global_install=args.global_install,
        clone=args.clone,
        force=args.force,
        no_cache=args.no_cache,
    )
    _emit(render.add_lines(res))
    return 0


def _cmd_lazy_init(mgr: EngramManager, args: argparse.Namespace) -> int:
    if args.all:
        res = mgr.initialize_all_lazy_modules(fetch_first=args.fetch)
        _emit(render.batch_lines(res))
        return 0 if res.ok else 1
    if not args.name:
        return _fail("lazy-init needs an engram name or --all")
    _emit(render.init_lines(mgr.initialize_lazy_module(args.name, fetch_first=args.fetch, force=args.force)))
    return 0


def _cmd_show_index(mgr: EngramManager, args: argparse.Namespace) -> int:
    listing = mgr.list_index(fetch_first=args.fetch)
    if listing.fetch_error:
        print(f"warning: could not fetch index: {listing.fetch_error}", file=sys.stderr)
    _emit(render.issue_lines(listing.issues), err=True)
    if not listing.exists:
        return _fail("No engram index found")
    if args.json:
        print(render.index_json(listing))
    else:
        _emit(render.index_lines(listing, ref=mgr.config.index_ref))
    return 0


def _cmd_push_index(mgr: EngramManager, args: argparse.Namespace) -> int:
    res = mgr.push_index()
    if not res.success:
        return _fail(f"Could not push index: {res.error}")
    print(f"Pushed {mgr.config.index_ref}")
    return 0


def _cmd_list(mgr: EngramManager, args: argparse.Namespace) -> int:
    _emit(render.installed_lines(mgr.list_installed()))
    return 0


def _cmd_modules(mgr: EngramManager, args: argparse.Namespace) -> int:
    report = mgr.list_modules()
    _emit(render.modules_lines(report.engrams))
    _emit(render.issue_lines(report.issues), err=True)
    return 0


def _cmd_tree(mgr: EngramManager, args: argparse.Namespace) -> int:
    engram = mgr.find_module(args.name)
    tree = generate_file_tree(engram.directory, include_metadata=args.metadata, max_depth=args.max_depth)
    print(tree if tree else f"(not materialized: {engram.directory})")
    return 0


def _cmd_init(mgr: EngramManager, args: argparse.Namespace) -> int:
    res = mgr.init_project()
    print(f"{'Created' if res.created else 'Using'} {res.engrams_dir}/")
    if res.auto_fetch:
        print("Configured auto-fetch for refs/engrams/*")
    if res.fetched_index:
        print("Fetched engram index from remote")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="engrams", description="Lazy context-module (engram) manager")
    ap.add_argument("-C", dest="cwd", default=None, help="Run as if started in this directory.")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("add", help="Add an engram from a git repository.")
    p.add_argument("repo", help="owner/repo, domain:owner/repo, or full URL.")
    p.add_argument("-n", "--name", default=None, help="Custom engram name (defaults to repo name).")
    p.add_argument("-g", "--global", dest="global_install", action="store_true", help="Install globally instead of in the project.")
    p.add_argument("-c", "--clone", action="store_true", help="Clone instead of adding as submodule.")
    p.add_argument("-f", "--force", action="store_true", help="Remove an existing engram at the target first.")
    p.add_argument("--no-cache", action="store_true", help="Skip the bare repo cache and clone directly.")
    p.set_defaults(handler=_cmd_add)

    p = sub.add_parser("lazy-init", help="Initialize a lazy engram on demand.")
    p.add_argument("name", nargs="?", default=None)
    p.add_argument("-f", "--fetch", action="store_true", help="Fetch the index from the remote first.")
    p.add_argument("-a", "--all", action="store_true", help="Initialize all uninitialized engrams.")
    p.add_argument("--force", action="store_true", help="Re-initialize even if already present.")
    p.set_defaults(handler=_cmd_lazy_init)

    p = sub.add_parser("show-index", help="Show the engram index.")
    p.add_argument("-f", "--fetch", action="store_true", help="Fetch the index from the remote first.")
    p.add_argument("--json", action="store_true", help="Output as JSON.")
    p.set_defaults(handler=_cmd_show_index)

    p = sub.add_parser("push-index", help="Push the engram index to the remote.")
    p.set_defaults(handler=_cmd_push_index)

    p = sub.add_parser("list", help="List installed engram directories.")
    p.set_defaults(handler=_cmd_list)

    p = sub.add_parser("modules", help="List discovered engrams, including lazy ones.")
    p.set_defaults(handler=_cmd_modules)

    p = sub.add_parser("tree", help="Print the file listing of an engram.")
    p.add_argument("name")
    p.add_argument("--metadata", action="store_true", help="Include one-line descriptions.")
    p.add_argument("--max-depth", type=int, default=5)
    p.set_defaults(handler=_cmd_tree)

    p = sub.add_parser("init", help="Create .engrams/ and configure index auto-fetch.")
    p.set_defaults(handler=_cmd_init)
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    fs = EngramsFsPaths.from_env()
    try:
        cfg = load_config(fs)
    except EngramError as e:
        return _fail(e.user_message)
    logger = setup_logging(fs.log_dir, cfg.log_level)

    cwd = os.path.abspath(args.cwd or os.getcwd())
    mgr = EngramManager(project_root=find_project_root(cwd), fs=fs, config=cfg, logger=logger)
    handler: Callable[[EngramManager, argparse.Namespace], int] = args.handler
    try:
        return handler(mgr, args)
    except EngramError as e:
        logger.error(f"{args.command} failed: {e.code}: {e.user_message}")
        return _fail(e.user_message)


if __name__ == "__main__":
    sys.exit(main())
