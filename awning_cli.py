#!/usr/bin/env python3
"""CLI wrapper for the awning visualization pipeline.

Usage:
    python awning_cli.py --image house.jpg --type knikarm
    python awning_cli.py --image house.jpg --type markiezen --color "lichtgrijs-wit-gestreept" \\
        --width 300 --projection 200 --floor eerste-verdieping --json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

import log_setup
log_setup.configure()

from awning_core import AwningPipeline, AwningRequest
from config import DIMENSION_MODES, EVAL_PROVIDERS, GOAL_POLICIES, IMAGE_PROVIDERS, Settings
from costs import CostTracker
from errors import AwningError, RequestValidationError
from imaging import ImageBuffer
from notifications import NotificationDispatcher
from oracles import build_oracles
from pricing import INSTALLATION_COSTS


def _data_uri(path: str) -> str:
    return ImageBuffer.from_bytes(Path(path).read_bytes()).to_data_uri()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Render an awning onto a house photo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python awning_cli.py --image house.jpg --type knikarm
  python awning_cli.py --image house.jpg --type uitvalarm --color oranje --swatch oranje.png
  python awning_cli.py --image house.jpg --type markiezen --pattern striped --stripe-ratio 2:1 \\
      --color "blauw-wit" --width 300 --projection 150 --floor begane-grond
""",
    )
    parser.add_argument("--image", required=True, help="House photo (JPEG/PNG)")
    parser.add_argument("--type", required=True, dest="awning_type",
                        help="Awning type: knikarm, uitvalarm or markiezen")
    parser.add_argument("--color", default=None, help="Fabric colour name")
    parser.add_argument("--pattern", choices=["solid", "striped"], default=None,
                        help="Fabric pattern (default: inferred from the colour name)")
    parser.add_argument("--stripe-ratio", default=None, help='Stripe ratio, e.g. "1:1"')
    parser.add_argument("--swatch", default=None, help="Colour swatch image")
    parser.add_argument("--width", type=float, default=None, help="Width in cm (100-800)")
    parser.add_argument("--projection", type=float, default=None, help="Projection in cm (50-400)")
    parser.add_argument("--floor", choices=sorted(INSTALLATION_COSTS), default=None,
                        help="Floor level, for the price indication")
    parser.add_argument("--email", default=None, help="Send notifications to this address")
    parser.add_argument("--name", default=None, help="Customer name for notifications")
    parser.add_argument("--image-provider", choices=IMAGE_PROVIDERS, default=None)
    parser.add_argument("--eval-provider", choices=EVAL_PROVIDERS, default=None)
    parser.add_argument("--goal-policy", choices=GOAL_POLICIES, default=None)
    parser.add_argument("--dimension-mode", choices=DIMENSION_MODES, default=None)
    parser.add_argument("--out", default=None, help="Output image path (default: <image>_awning.<ext>)")
    parser.add_argument("--json", action="store_true", help="Also write the JSON report next to the image")

    args = parser.parse_args()

    overrides = {
        "image_provider": args.image_provider,
        "eval_provider": args.eval_provider,
        "goal_policy": args.goal_policy,
        "dimension_mode": args.dimension_mode,
    }
    settings = Settings.from_env().with_overrides(**{k: v for k, v in overrides.items() if v})

    missing = settings.missing_keys()
    if missing:
        print(f"✗  {', '.join(missing)} not set", file=sys.stderr)
        return 2

    payload = {
        "image_data": _data_uri(args.image),
        "new_awning_type": args.awning_type,
        "new_fabric_color": args.color,
        "pattern_type": args.pattern,
        "stripe_ratio": args.stripe_ratio,
        "color_swatch_image": _data_uri(args.swatch) if args.swatch else None,
        "width": args.width,
        "projection": args.projection,
        "verdieping": args.floor,
        "include_price_indication": bool(args.width and args.projection and args.floor),
        "send_notifications": bool(args.email),
        "customer_email": args.email,
        "customer_name": args.name,
    }
    try:
        awning_request = AwningRequest.from_payload(payload)
    except RequestValidationError as exc:
        print(f"✗  {exc}", file=sys.stderr)
        return 2

    _echo("\n  ✦ Awning Visualizer CLI")
    _echo(f"  Photo   : {args.image} ({awning_request.image.width}x{awning_request.image.height})")
    _echo(f"  Request : {awning_request.describe()}")
    _echo(f"  Oracles : {settings.image_provider} / {settings.eval_provider}:{settings.resolved_eval_model}\n")

    def progress_cb(event: dict) -> None:
        prefix = {
            "started":   "  ◌ ",
            "completed": "  ✓ ",
            "failed":    "  ✗ ",
            "skipped":   "  – ",
        }.get(event.get("status", ""), "    ")
        _echo(f"{prefix}{event.get('message', '')}")

    cost_tracker = CostTracker()
    try:
        result = AwningPipeline(
            awning_request,
            settings,
            build_oracles(settings, cost_tracker),
            dispatcher=NotificationDispatcher.from_settings(settings) if args.email else None,
            progress_cb=progress_cb,
            cost_tracker=cost_tracker,
        ).run()
    except AwningError as exc:
        print(f"\n✗  {exc}", file=sys.stderr)
        return 1

    final = ImageBuffer.from_data_uri(result["processed_image"])
    source = Path(args.image)
    extension = "jpg" if final.mime_type == "image/jpeg" else final.mime_type.split("/")[-1]
    out_path = Path(args.out) if args.out else source.with_name(f"{source.stem}_awning.{extension}")
    out_path.write_bytes(final.to_bytes())

    cost = result["debug"]["costs"]
    _echo("\n  ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━")
    _echo(f"  Placement: {result['placement_score']}")
    _echo(f"  Colour   : {result['color_score']}")
    _echo(f"  Overall  : {result['overall_score']}  ({'goal achieved' if result['goal_achieved'] else 'below goal'})")
    if result["price_data"]:
        _echo(f"  Price    : €{result['price_data']['total_price']:.2f} incl. BTW")
    _echo(f"  Duration : {result['debug']['duration']:.1f}s")
    _echo(f"  Cost     : ~${cost['total']:.4f}  ({cost['calls']} oracle calls)")
    _echo(f"  Output   : {out_path}\n")

    if args.json:
        report = dict(result, processed_image=str(out_path))
        report_path = out_path.with_suffix(".json")
        report_path.write_text(json.dumps(report, indent=2), encoding="utf-8")
        _echo(f"  ✓ Report saved: {report_path}")

    return 0


def _echo(msg: str) -> None:
    print(msg, flush=True)


if __name__ == "__main__":
    raise SystemExit(main())
