#!/usr/bin/env python3
"""
MODE OS CLI

Command-line access to the mode engine.

Usage:
    python cli.py decide --events events.json [--now ISO] [--pin MODE] [--json]
    python cli.py scenarios [--tag TAG]   # List built-in scenarios
    python cli.py scenario <id> [--json]  # Load a scenario and replay its checkpoints
    python cli.py config                  # Effective timing thresholds
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime, timedelta

from modeos import config as app_config
from modeos.config import get_timing_config
from modeos.errors import CalendarUnavailableError, MalformedEventError
from modeos.modes import (
    DecisionCapsule,
    EvaluationScheduler,
    InMemorySynthesisLedger,
    Mode,
    StaticCalendarSource,
    build_capsule,
    decide,
    get_scenario,
    last_ended_event,
    list_scenarios,
    normalize,
    read_events_file,
)
from modeos.modes.models import parse_timestamp
from modeos.modes.scenarios import default_anchor
from modeos.observability import configure_logging


def render_capsule(capsule: DecisionCapsule) -> str:
    """Plain-text "Why this view?" panel."""
    lines = [
        f"Mode: {capsule.view_label} ({capsule.mode.value})" + (" [pinned]" if capsule.pinned else ""),
        f"Confidence: {capsule.confidence.value} - {capsule.confidence_note}",
        f"Why: {capsule.reason}",
    ]
    if capsule.signals_used:
        lines.append("\nSignals:")
        lines.extend(f"  - {s}" for s in capsule.signals_used)
    if capsule.alternatives:
        lines.append("\nAlternatives:")
        lines.extend(f"  - {a.mode.value}: {a.reason}" for a in capsule.alternatives)
    if capsule.would_change_if:
        lines.append("\nWould change:")
        lines.extend(f"  - {w}" for w in capsule.would_change_if)
    if capsule.actions:
        lines.append("\nActions:")
        lines.extend(f"  - {a.label}" for a in capsule.actions)
    if capsule.adjacency:
        lines.append(f"\nNext: {capsule.adjacency.label}")
    return "\n".join(lines)


def _parse_now(value: str | None) -> datetime | None:
    if value is None:
        return None
    return parse_timestamp(value, "--now")


def cmd_decide(args):
    """Decide the mode for an events file."""
    try:
        now = _parse_now(args.now) or datetime.now().astimezone()
        pin = Mode.parse(args.pin) if args.pin else None
        events = read_events_file(args.events) if args.events else []
    except (MalformedEventError, CalendarUnavailableError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    timing = get_timing_config()
    ledger = InMemorySynthesisLedger(args.synthesis_done or ())
    last = last_ended_event(events, now, timing)
    synthesis_open = last is not None and not ledger.is_completed(last.id)

    signals = normalize(events, now, synthesis_open=synthesis_open, config=timing)
    decision = decide(signals, pin=pin, config=timing)
    capsule = build_capsule(decision)

    if args.json:
        print(json.dumps({"signals": signals.to_dict(), "capsule": capsule.to_dict()}, indent=2))
    else:
        print(render_capsule(capsule))
    return 0


def cmd_scenarios(args):
    """List built-in scenarios."""
    scenarios = list_scenarios(args.tag)
    if not scenarios:
        print(f"No scenarios tagged {args.tag!r}")
        return 0

    print(f"## Scenarios ({len(scenarios)})\n")
    for s in scenarios:
        marker = f" [{len(s.checkpoints)} checkpoints]" if s.checkpoints else ""
        print(f"- {s.id}: {s.name} -> {s.expected_mode.value}{marker}")
        print(f"  {s.description}")
    return 0


async def _replay(scenario, anchor: datetime):
    scheduler = EvaluationScheduler(StaticCalendarSource(()), config=get_timing_config())
    loaded = await scheduler.load_scenario(scenario, now=anchor)
    checkpoints = []
    for cp in scenario.checkpoints:
        result = await scheduler.jump_to(anchor + timedelta(minutes=cp.offset_minutes))
        checkpoints.append((cp, result))
    await scheduler.stop()
    return loaded, checkpoints


def cmd_scenario(args):
    """Load one scenario and replay its checkpoints."""
    try:
        scenario = get_scenario(args.id)
    except KeyError as e:
        print(f"error: {e.args[0]}", file=sys.stderr)
        return 1

    try:
        anchor = _parse_now(args.anchor) or default_anchor()
    except MalformedEventError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    loaded, checkpoints = asyncio.run(_replay(scenario, anchor))
    ok = loaded.mode == scenario.expected_mode and all(
        result.mode == cp.expected_mode for cp, result in checkpoints
    )

    if args.json:
        print(
            json.dumps(
                {
                    "scenario": scenario.to_dict(),
                    "loaded": loaded.to_dict(),
                    "checkpoints": [
                        {
                            "id": cp.id,
                            "expected_mode": cp.expected_mode.value,
                            "mode": result.mode.value,
                            "confidence": result.decision.confidence.value,
                            "passed": result.mode == cp.expected_mode,
                        }
                        for cp, result in checkpoints
                    ],
                    "passed": ok,
                },
                indent=2,
            )
        )
        return 0 if ok else 1

    print(f"## {scenario.name} ({scenario.id})\n")
    print(render_capsule(loaded.capsule))
    if checkpoints:
        print("\n## Checkpoints\n")
        for cp, result in checkpoints:
            status = "PASS" if result.mode == cp.expected_mode else "FAIL"
            print(
                f"[{status}] {cp.offset_minutes:+g} min {cp.name}: "
                f"{result.mode.value} ({result.decision.confidence.value}), "
                f"expected {cp.expected_mode.value}"
            )
    print(f"\n{'All checks passed' if ok else 'Some checks failed'}")
    return 0 if ok else 1


def cmd_config(args):
    """Print effective timing thresholds."""
    timing = get_timing_config()
    if args.json:
        print(json.dumps(timing.to_dict(), indent=2))
        return 0
    print("## Timing\n")
    for name, value in timing.to_dict().items():
        print(f"  {name}: {value:g}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="MODE OS CLI")
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # decide
    p = subparsers.add_parser("decide", help="Decide the mode for a calendar")
    p.add_argument("--events", help="JSON file with a list of events")
    p.add_argument("--now", help="Evaluation time (ISO-8601, default: now)")
    p.add_argument("--pin", help="Pinned mode")
    p.add_argument(
        "--synthesis-done",
        action="append",
        metavar="EVENT_ID",
        help="Event whose synthesis is complete (repeatable)",
    )
    p.add_argument("--json", action="store_true", help="JSON output")

    # scenarios
    p = subparsers.add_parser("scenarios", help="List built-in scenarios")
    p.add_argument("--tag", help="Only scenarios with this tag")

    # scenario
    p = subparsers.add_parser("scenario", help="Run one scenario")
    p.add_argument("id", help="Scenario id")
    p.add_argument("--anchor", help="Anchor time (ISO-8601, default: current minute)")
    p.add_argument("--json", action="store_true", help="JSON output")

    # config
    p = subparsers.add_parser("config", help="Show timing config")
    p.add_argument("--json", action="store_true", help="JSON output")

    args = parser.parse_args(argv)
    configure_logging(args.log_level, json_format=bool(app_config.LOG_JSON))

    commands = {
        "decide": cmd_decide,
        "scenarios": cmd_scenarios,
        "scenario": cmd_scenario,
        "config": cmd_config,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
