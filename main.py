"""
CLI entry point for profile-guard.

Usage:
    python main.py resolve --profiles data/profiles.json --subject u1 [--subject u2 ...]
    python main.py report --profiles data/profiles.json --subject u1 --out data/health.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from profile_guard.config import configure_logging
from profile_guard.pipeline import ProfilePipeline, build_pipeline
from profile_guard.profiles.sources import JsonProfileSource


def _build(args) -> ProfilePipeline:
    source = JsonProfileSource(Path(args.profiles) if args.profiles else None)
    return build_pipeline(source)


async def _resolve_all(pipeline: ProfilePipeline, subjects, rounds: int) -> None:
    for _ in range(rounds):
        for subject in subjects:
            profile = await pipeline.resolver.resolve(subject)
            shown = profile.model_dump() if profile is not None else None
            print(f"  {subject}: {json.dumps(shown)}")


def cmd_resolve(args):
    """Resolve profiles and print the resulting health snapshot."""
    pipeline = _build(args)
    asyncio.run(_resolve_all(pipeline, args.subject, args.rounds))
    print("\n--- Health ---")
    print(pipeline.metrics.snapshot().model_dump_json(indent=2))


def cmd_report(args):
    """Resolve profiles, then export the JSON health report."""
    pipeline = _build(args)
    asyncio.run(_resolve_all(pipeline, args.subject, args.rounds))
    if args.out:
        path = pipeline.metrics.write_report(Path(args.out))
        print(f"Report saved to {path}")
    else:
        print(pipeline.metrics.export_report())


def main():
    parser = argparse.ArgumentParser(
        description="profile-guard - tiered profile cache with recovery"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (("resolve", "Resolve profiles"), ("report", "Export health report")):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("--profiles", default=None, help="JSON file of profiles")
        p.add_argument("--subject", action="append", required=True, help="Subject id")
        p.add_argument("--rounds", type=int, default=2, help="Resolve passes")
        if name == "report":
            p.add_argument("--out", default=None, help="Write report to this path")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging()
    commands = {
        "resolve": cmd_resolve,
        "report": cmd_report,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
