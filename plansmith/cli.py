"""Command line interface for Plansmith."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from plansmith.config import get_config
from plansmith.indicators import SystemIndicators
from plansmith.pipeline import STATUS_OK, SynthesisEngine, UnknownCandidateError


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _summary_from_args(args: argparse.Namespace) -> dict | None:
    if getattr(args, "summary_json", None):
        try:
            data = json.loads(args.summary_json)
        except json.JSONDecodeError as exc:
            raise SystemExit(f"--summary-json is not valid JSON: {exc}")
        if not isinstance(data, dict):
            raise SystemExit("--summary-json must be a JSON object")
        return data
    fields = {
        "action": getattr(args, "action", None),
        "entity": getattr(args, "entity", None),
        "attributes": getattr(args, "attribute", None),
        "certainty": getattr(args, "certainty", None),
    }
    if not any(fields.values()):
        return None
    return {key: value for key, value in fields.items() if value}


def _indicators_from_args(args: argparse.Namespace) -> SystemIndicators | None:
    if args.cache_hit_rate is None and args.load is None:
        return None
    return SystemIndicators.from_dict({
        "cache_hit_rate": args.cache_hit_rate if args.cache_hit_rate is not None else 0.5,
        "load": args.load if args.load is not None else 0.5,
        "source": "cli",
    })


def cmd_encode(args: argparse.Namespace) -> None:
    engine = SynthesisEngine(get_config())
    encoding = engine.encode(_summary_from_args(args), text=args.text, user_id=args.user)
    _print(encoding.to_dict())


def cmd_synthesize(args: argparse.Namespace) -> None:
    engine = SynthesisEngine(get_config())
    result = engine.synthesize(
        _summary_from_args(args),
        text=args.text,
        user_id=args.user,
        indicators=_indicators_from_args(args),
        timeout=args.timeout,
        threshold_override=args.threshold,
    )
    _print(result.to_dict())
    if args.strict and result.status != STATUS_OK:
        sys.exit(1)


def cmd_record(args: argparse.Namespace) -> None:
    engine = SynthesisEngine(get_config())
    try:
        ack = engine.record_choice(
            args.candidate_id,
            success=args.outcome == "success",
            duration=args.duration,
            user_id=args.user,
            timed_out=args.outcome == "timeout",
        )
    except UnknownCandidateError:
        _print({"ok": False, "error": f"unknown candidate: {args.candidate_id}"})
        sys.exit(2)
    _print(ack.to_dict())


def cmd_stats(args: argparse.Namespace) -> None:
    engine = SynthesisEngine(get_config())
    if args.plan_type:
        stats = engine.store.get_stats(args.plan_type)
        _print(stats.to_dict() if stats else {"plan_type": args.plan_type, "execution_count": 0})
        return
    if args.user:
        profile = engine.profile(args.user)
        _print(profile.to_dict() if profile else {"user_id": args.user, "interactions": 0})
        return
    _print({"stats": engine.stats()})


def cmd_serve(args: argparse.Namespace) -> None:
    from plansmith.server import main as serve_main
    serve_main()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="plansmith")
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command")

    def intent_arguments(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("--text", help="Free-form request; parsed with the lexicon")
        cmd.add_argument("--action")
        cmd.add_argument("--entity")
        cmd.add_argument("--attribute", action="append")
        cmd.add_argument("--certainty")
        cmd.add_argument("--summary-json", help="Intent summary as a JSON object")
        cmd.add_argument("--user")

    encode = sub.add_parser("encode", help="Encode an intent summary")
    intent_arguments(encode)

    synthesize = sub.add_parser("synthesize", help="Generate, score and select candidate plans")
    intent_arguments(synthesize)
    synthesize.add_argument("--cache-hit-rate", type=float)
    synthesize.add_argument("--load", type=float)
    synthesize.add_argument("--timeout", type=float)
    synthesize.add_argument("--threshold", type=float)
    synthesize.add_argument("--strict", action="store_true", help="Exit non-zero unless status is ok")

    record = sub.add_parser("record", help="Record the outcome of a chosen candidate")
    record.add_argument("candidate_id")
    record.add_argument("--outcome", choices=["success", "failure", "timeout"], default="success")
    record.add_argument("--duration", type=float, default=0.0)
    record.add_argument("--user")

    stats = sub.add_parser("stats", help="Show plan-type statistics or a user profile")
    stats.add_argument("--plan-type")
    stats.add_argument("--user")

    sub.add_parser("serve", help="Run the HTTP API")
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "encode":
        cmd_encode(args)
    elif args.command == "synthesize":
        cmd_synthesize(args)
    elif args.command == "record":
        cmd_record(args)
    elif args.command == "stats":
        cmd_stats(args)
    elif args.command == "serve":
        cmd_serve(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
