#!/usr/bin/env python3
"""Command line front end for the memory store. Every command prints JSON.

    python -m brain.cli store pain "Title" --content ... --rule ... --tags git,deploy
    python -m brain.cli retrieve "prompt text"
    python -m brain.cli health [--text]
    python -m brain.cli prune [--dry-run]
    python -m brain.cli reflect [--force]
    python -m brain.cli rules
    python -m brain.cli session-start
    python -m brain.cli log tail [-n 50] | clear
"""

import argparse
import json
import sys

from .health import format_health_report
from .logging_config import clear_log, get_log_contents, set_log_dir
from .models import MEMORY_TYPES, SEVERITIES
from .store import MemoryStore


def _tags(value: str) -> list:
    return [t.strip() for t in value.split(",") if t.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Brain memory operations")
    parser.add_argument("--root", default=None, help="State directory (default: resolved .brain)")
    parser.add_argument("--project", default="default", help="Project id recorded on new memories")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("store", help="Gate and store a memory")
    p.add_argument("type", choices=MEMORY_TYPES)
    p.add_argument("title")
    p.add_argument("--content", default="")
    p.add_argument("--rule", default="")
    p.add_argument("--tags", type=_tags, default=[])
    p.add_argument("--severity", choices=SEVERITIES, default=None)

    p = subparsers.add_parser("retrieve", help="Retrieve memories for a prompt")
    p.add_argument("prompt")

    p = subparsers.add_parser("health", help="Brain health report")
    p.add_argument("--text", action="store_true", help="Human-readable report")

    p = subparsers.add_parser("prune", help="Archive dead memories")
    p.add_argument("--dry-run", action="store_true")

    p = subparsers.add_parser("reflect", help="Generate reflections")
    p.add_argument("--force", action="store_true", help="Ignore the session trigger")

    subparsers.add_parser("rules", help="Learn rules from the memory pool")
    subparsers.add_parser("session-start", help="Begin a session (decay cross-session state)")

    p = subparsers.add_parser("log", help="Inspect the brain log")
    log_sub = p.add_subparsers(dest="log_command", required=True)
    tail = log_sub.add_parser("tail")
    tail.add_argument("-n", type=int, default=50)
    log_sub.add_parser("clear")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.root:
        set_log_dir(args.root)

    if args.command == "log":
        if args.log_command == "tail":
            for line in get_log_contents(args.n):
                print(line)
        else:
            clear_log()
            print(json.dumps({"cleared": True}))
        return 0

    store = MemoryStore(args.root, args.project)
    if args.command == "store":
        result = store.store_memory(args.type, args.title, args.content, args.rule, args.tags, args.severity)
    elif args.command == "retrieve":
        result = store.retrieve(args.prompt)
    elif args.command == "health":
        result = store.health()
        if args.text:
            print(format_health_report(result))
            return 0
    elif args.command == "prune":
        result = store.archive(dry_run=args.dry_run)
    elif args.command == "reflect":
        result = store.reflect(force=args.force)
    elif args.command == "rules":
        result = store.learn_rules()
    else:
        result = store.start_session()

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
