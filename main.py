"""
CLI entry point for PhotoRoute.

Usage:
    python main.py route --image photo.jpg --prompt "remove the background" --out result.png
    python main.py route --image photo.jpg --task restyle --tier pro --quality ultra
    python main.py providers
    python main.py usage --user alice
    python main.py classify --prompt "make it look like a painting"

Credit usage persists between runs in a JSON state file (``--state``) and
routed results in a JSONL cache file (``--cache``), so repeating an edit
is served from the cache without spending a credit.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from photoroute.config import get_settings
from photoroute.ledger import UsageTracker
from photoroute.models import EditQuality, EditTask, Tier
from photoroute.routing import (
    EditTaskDetector,
    Failed,
    RequiresUpgrade,
    Routed,
    build_engine,
    request_from_prompt,
)
from photoroute.tracking import EventTracker

DEFAULT_STATE = Path("data") / "usage.json"
DEFAULT_CACHE = Path("data") / "result_cache.jsonl"


def configure_logging() -> None:
    settings = get_settings().logging
    logging.basicConfig(
        level=getattr(logging, settings.level.upper(), logging.INFO),
        format=settings.format,
    )


def load_ledger_state(ledger: UsageTracker, path: Path) -> None:
    if path.exists():
        with open(path, "r", encoding="utf-8") as fh:
            ledger.import_state(json.load(fh))


def save_ledger_state(ledger: UsageTracker, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(ledger.export_state(), fh, indent=2)


def cmd_route(args) -> int:
    """Route a single image edit and write the result."""
    image_path = Path(args.image)
    if not image_path.exists():
        print(f"Error: {image_path} not found.", file=sys.stderr)
        return 1

    engine = build_engine(tracker=EventTracker())
    state_path = Path(args.state)
    cache_path = Path(args.cache)
    load_ledger_state(engine.ledger, state_path)
    engine.cache.load_from_file(cache_path)

    request = request_from_prompt(
        image_path.read_bytes(),
        args.prompt or "",
        task=EditTask(args.task) if args.task else None,
        quality=EditQuality(args.quality),
        tier=Tier(args.tier),
        user_id=args.user,
    )
    decision = engine.route(request)
    save_ledger_state(engine.ledger, state_path)
    engine.cache.save_to_file(cache_path)

    output = {"request_id": request.request_id, "task": request.task.value, "decision": decision.kind}
    if isinstance(decision, Routed):
        out_path = Path(args.out) if args.out else image_path.with_name(
            f"{image_path.stem}_{decision.provider_id.value}{image_path.suffix or '.jpg'}"
        )
        out_path.write_bytes(decision.result.image)
        output.update(
            provider=decision.provider_id.value,
            cost_class=decision.cost_class.value,
            cache_hit=decision.cache_hit,
            output=str(out_path),
            metadata=decision.result.metadata,
        )
    elif isinstance(decision, RequiresUpgrade):
        output.update(json.loads(decision.model_dump_json()))
    elif isinstance(decision, Failed):
        output.update(json.loads(decision.error.model_dump_json()))

    print(json.dumps(output, indent=2, default=str))
    return 0 if isinstance(decision, Routed) else 2


def cmd_providers(args) -> int:
    """Validate every backend's configuration."""
    engine = build_engine()
    results = {pid.value: ok for pid, ok in engine.validate_providers().items()}
    catalogue = engine.registry.to_dict()
    for entry in catalogue["providers"]:
        entry["configured"] = results.get(entry["id"], False)
    print(json.dumps(catalogue, indent=2))
    return 0


def cmd_usage(args) -> int:
    """Show the credit ledger for a user."""
    ledger = UsageTracker(get_settings().credits)
    load_ledger_state(ledger, Path(args.state))
    snapshot = ledger.snapshot(args.user)
    data = json.loads(snapshot.model_dump_json())
    for tier in Tier:
        usage = snapshot.for_tier(tier)
        data["tiers"][tier.value].update(
            budget_remaining=usage.budget_remaining,
            premium_remaining=usage.premium_remaining,
            usage_percentage=usage.usage_percentage,
        )
    print(json.dumps(data, indent=2))
    return 0


def cmd_classify(args) -> int:
    """Detect the edit task implied by a prompt."""
    detection = EditTaskDetector().detect(args.prompt)
    print(json.dumps(json.loads(detection.model_dump_json()), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PhotoRoute - photo edit routing engine")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # route
    p_route = subparsers.add_parser("route", help="Route one image edit")
    p_route.add_argument("--image", required=True, help="Source image file")
    p_route.add_argument("--prompt", default="", help="Edit instruction")
    p_route.add_argument("--task", choices=[t.value for t in EditTask], default=None,
                         help="Edit task (detected from the prompt when omitted)")
    p_route.add_argument("--quality", choices=[q.value for q in EditQuality],
                         default=get_settings().routing.default_quality)
    p_route.add_argument("--tier", choices=[t.value for t in Tier], default=Tier.FREE.value)
    p_route.add_argument("--user", default="anonymous", help="User id for credit accounting")
    p_route.add_argument("--out", default=None, help="Output image path")
    p_route.add_argument("--state", default=str(DEFAULT_STATE), help="Ledger state file")
    p_route.add_argument("--cache", default=str(DEFAULT_CACHE), help="Result cache file")

    # providers
    subparsers.add_parser("providers", help="Validate provider configuration")

    # usage
    p_usage = subparsers.add_parser("usage", help="Show credit usage")
    p_usage.add_argument("--user", default="anonymous")
    p_usage.add_argument("--state", default=str(DEFAULT_STATE), help="Ledger state file")

    # classify
    p_classify = subparsers.add_parser("classify", help="Detect the task of a prompt")
    p_classify.add_argument("--prompt", required=True)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    configure_logging()
    commands = {
        "route": cmd_route,
        "providers": cmd_providers,
        "usage": cmd_usage,
        "classify": cmd_classify,
    }
    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
