"""Oracle usage and cost ledger for a single visualization request.

Token-billed calls (evaluations) are priced from reported token counts.
Image generations are priced at an estimated flat rate per image.

Each finished request is appended to logs/costs.log as a small table.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

log = logging.getLogger(__name__)

LOGS_DIR = Path(__file__).parent / "logs"
COST_LOG = LOGS_DIR / "costs.log"

# ── Pricing tables ────────────────────────────────────────────────────────────
# (input $/1M tokens, output $/1M tokens), matched by model-name prefix
_TOKEN_PRICING: Dict[str, Dict[str, tuple]] = {
    "gemini": {
        "gemini-2.5-flash-lite": (0.10, 0.40),
        "gemini-2.5-flash": (0.30, 2.50),
        "gemini-2.5-pro": (1.25, 10.00),
    },
    "openai": {
        "gpt-4.1-mini": (0.40, 1.60),
        "gpt-4.1": (2.00, 8.00),
        "gpt-4o-mini": (0.15, 0.60),
        "gpt-4o": (2.50, 10.00),
    },
    "anthropic": {
        "claude-haiku": (1.00, 5.00),
        "claude-sonnet": (3.00, 15.00),
        "claude-opus": (15.00, 75.00),
    },
}
_TOKEN_DEFAULT = (2.50, 10.00)

# Estimated $ per generated image
_IMAGE_PRICING: Dict[str, float] = {
    "gemini-2.5-flash-image": 0.039,
    "gemini-2.5-flash-image-preview": 0.039,
    "google/nano-banana": 0.039,
    "google/nano-banana-pro": 0.150,
}
_IMAGE_DEFAULT = 0.040


def _token_rate(provider: str, model: str) -> tuple:
    table = _TOKEN_PRICING.get(provider, {})
    # Longest prefix first so "gpt-4o-mini" does not match "gpt-4o"
    for prefix in sorted(table, key=len, reverse=True):
        if model.startswith(prefix):
            return table[prefix]
    log.debug("No %s pricing match for '%s', using default", provider, model)
    return _TOKEN_DEFAULT


def _image_rate(model: str) -> float:
    rate = _IMAGE_PRICING.get(model)
    if rate is None:
        log.debug("No image pricing match for '%s', using default", model)
        return _IMAGE_DEFAULT
    return rate


class CostTracker:
    """Accumulates one record per oracle call."""

    def __init__(self) -> None:
        self.items: List[Dict] = []

    def record_tokens(
        self,
        stage: str,
        provider: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
    ) -> float:
        in_rate, out_rate = _token_rate(provider, model)
        cost = (input_tokens * in_rate + output_tokens * out_rate) / 1_000_000
        self.items.append({
            "type": "tokens",
            "stage": stage,
            "provider": provider,
            "model": model,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "cost": cost,
            "estimated": False,
        })
        log.debug(
            "Token cost [%s] %s/%s  %d in / %d out  $%.6f",
            stage, provider, model, input_tokens, output_tokens, cost,
        )
        return cost

    def record_image(
        self,
        stage: str,
        provider: str,
        model: str,
        elapsed: float = 0.0,
    ) -> float:
        cost = _image_rate(model)
        self.items.append({
            "type": "image",
            "stage": stage,
            "provider": provider,
            "model": model,
            "elapsed": round(elapsed, 2),
            "cost": cost,
            "estimated": True,
        })
        log.debug("Image cost [%s] %s/%s  %.1fs  ~$%.4f", stage, provider, model, elapsed, cost)
        return cost

    @property
    def call_count(self) -> int:
        return len(self.items)

    def summary(self) -> Dict:
        by_provider: Dict[str, float] = {}
        for item in self.items:
            by_provider[item["provider"]] = by_provider.get(item["provider"], 0.0) + item["cost"]
        return {
            "calls": self.call_count,
            "image_calls": sum(1 for i in self.items if i["type"] == "image"),
            "by_provider": {k: round(v, 6) for k, v in by_provider.items()},
            "total": round(sum(by_provider.values()), 6),
            "has_estimates": any(i["estimated"] for i in self.items),
        }


# ── Log writer ────────────────────────────────────────────────────────────────

_W = 78
_DIV = "─" * _W


def append_cost_log(
    request_id: str,
    label: str,
    duration: float,
    tracker: CostTracker,
    log_path: Optional[Path] = None,
) -> None:
    """Append one request's cost table to costs.log."""
    path = log_path or COST_LOG
    path.parent.mkdir(parents=True, exist_ok=True)
    summary = tracker.summary()
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    marker = "~" if summary["has_estimates"] else " "

    lines = [
        "═" * _W,
        f"  Request {request_id:<10}  {label}   {now}   {duration:.1f}s",
        _DIV,
        f"  {'Stage':<26} {'Provider/Model':<32} {'Cost':>12}",
    ]
    for item in tracker.items:
        model = f"{item['provider']}/{item['model'].split('/')[-1]}"[:32]
        prefix = "~" if item["estimated"] else " "
        lines.append(f"  {item['stage'][:26]:<26} {model:<32} {prefix}${item['cost']:>10.6f}")
    lines.append(_DIV)
    for provider, cost in summary["by_provider"].items():
        lines.append(f"  {provider + ':':<59} ${cost:>10.6f}")
    lines.append(f"  {'Request total (' + str(summary['calls']) + ' calls):':<58}{marker}${summary['total']:>10.6f}")
    lines.append("")

    with open(path, "a", encoding="utf-8") as fh:
        fh.write("\n".join(lines) + "\n")

    log.info("Cost logged: request=%s  total=%s$%.4f  calls=%d",
             request_id, marker, summary["total"], summary["calls"])
