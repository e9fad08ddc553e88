"""Awning Visualizer — request parsing and the per-request pipeline.

Flow for one request:

  validate → (price) → start e-mail → placement search → colour search
           → goal → completion e-mail → result dict

The pipeline is constructed per request and holds no state between requests.
Only ``PlacementExhaustedError`` escapes ``run()``; oracle failures are
absorbed by the searches and notification failures by the dispatcher.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from catalog import AwningType, PatternType, resolve_pattern
from config import Settings
from costs import CostTracker, append_cost_log
from errors import RequestValidationError
from imaging import DimensionGuard, ImageBuffer
from notifications import NotificationDispatcher
from oracles import OracleSet
from pricing import PriceBreakdown, PriceCalculator
from scoring import GoalPolicy, determine_goal
from search import (
    ColorOutcome,
    ColorRefinementSearch,
    ColorStrategy,
    PlacementOutcome,
    PlacementSearch,
    PlacementStrategy,
)

log = logging.getLogger(__name__)

WIDTH_RANGE = (100, 800)       # cm
PROJECTION_RANGE = (50, 400)   # cm
COLOR_GATE = 30                # minimum placement score before colour editing

_TRUE_STRINGS = ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------

def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _number(payload: Mapping[str, Any], name: str) -> Optional[float]:
    value = payload.get(name)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise RequestValidationError(f"{name} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise RequestValidationError(f"{name} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class AwningRequest:
    image: ImageBuffer
    awning_type: AwningType
    fabric_color: Optional[str] = None
    pattern: PatternType = PatternType.SOLID
    stripe_ratio: Optional[str] = None
    swatch: Optional[ImageBuffer] = None
    width: Optional[float] = None
    projection: Optional[float] = None
    floor: Optional[str] = None
    include_price_indication: bool = False
    send_notifications: bool = False
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any, pricing: bool = True) -> "AwningRequest":
        """Validate a JSON body. Raises RequestValidationError on bad input.

        With ``pricing=False`` the price fields are ignored entirely.
        """
        if not isinstance(payload, Mapping):
            raise RequestValidationError("Request body must be a JSON object")
        if not payload.get("image_data") or not payload.get("new_awning_type"):
            raise RequestValidationError("Missing required parameters: image_data, new_awning_type")

        awning_type = AwningType.parse(payload.get("new_awning_type"))
        image = ImageBuffer.from_data_uri(str(payload["image_data"]))
        swatch_uri = payload.get("color_swatch_image")
        swatch = ImageBuffer.from_data_uri(str(swatch_uri)) if swatch_uri else None

        fabric_color = _text(payload.get("new_fabric_color"))
        pattern = resolve_pattern(PatternType.parse(payload.get("pattern_type")), fabric_color)

        width = projection = None
        floor = None
        include_price = pricing and _flag(payload.get("include_price_indication"))
        if include_price:
            width = _number(payload, "width")
            projection = _number(payload, "projection")
            floor = _text(payload.get("verdieping"))
            if width and projection and floor:
                if not (WIDTH_RANGE[0] <= width <= WIDTH_RANGE[1]
                        and PROJECTION_RANGE[0] <= projection <= PROJECTION_RANGE[1]):
                    raise RequestValidationError(
                        "Invalid dimensions. Width must be 100-800cm, projection must be 50-400cm"
                    )

        return cls(
            image=image,
            awning_type=awning_type,
            fabric_color=fabric_color,
            pattern=pattern,
            stripe_ratio=_text(payload.get("stripe_ratio")),
            swatch=swatch,
            width=width,
            projection=projection,
            floor=floor,
            include_price_indication=include_price,
            send_notifications=_flag(payload.get("send_notifications")),
            customer_email=_text(payload.get("customer_email")),
            customer_name=_text(payload.get("customer_name")),
        )

    @property
    def color_requested(self) -> bool:
        return bool(self.fabric_color) and self.fabric_color.lower() != "default"

    @property
    def price_inputs_complete(self) -> bool:
        return bool(self.width and self.projection and self.floor)

    def describe(self) -> str:
        parts = [self.awning_type.value]
        if self.color_requested:
            parts.append(f"{self.fabric_color} ({self.pattern.value})")
        if self.swatch is not None:
            parts.append("swatch")
        return " / ".join(parts)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class AwningPipeline:
    """Runs one visualization request end to end."""

    def __init__(
        self,
        request: AwningRequest,
        settings: Settings,
        oracles: OracleSet,
        dispatcher: Optional[NotificationDispatcher] = None,
        progress_cb: Optional[Callable[[Dict], None]] = None,
        cost_tracker: Optional[CostTracker] = None,
        request_id: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.request = request
        self.settings = settings
        self.oracles = oracles
        self.dispatcher = dispatcher
        self.progress_cb = progress_cb
        self.cost_tracker = cost_tracker or CostTracker()
        self.request_id = request_id or uuid.uuid4().hex[:8]
        self._sleep = sleep

        tolerance = settings.aspect_tolerance if settings.dimension_mode == "aspect" else None
        self.guard = DimensionGuard(tolerance)
        self.goal_policy = GoalPolicy(settings.goal_policy)

        log.info(
            "Pipeline init: request=%s  %s  image=%dx%d  generator=%s/%s  evaluator=%s/%s",
            self.request_id, request.describe(), request.image.width, request.image.height,
            oracles.generator.provider, oracles.generator.model,
            oracles.evaluator.provider, oracles.evaluator.model,
        )

    # ------------------------------------------------------------------
    # Event helpers
    # ------------------------------------------------------------------

    def _emit(self, stage: str, status: str, message: str, data: Optional[Dict] = None) -> None:
        lvl = logging.WARNING if status == "failed" else logging.DEBUG
        log.log(lvl, "[%s] %s: %s", self.request_id, stage, message)
        if not self.progress_cb:
            return
        event: Dict[str, Any] = {"stage": stage, "status": status, "message": message, "ts": time.time()}
        if data:
            event["data"] = data
        self.progress_cb(event)

    def _engine_kwargs(self) -> Dict[str, Any]:
        return {
            "generator": self.oracles.generator,
            "evaluator": self.oracles.evaluator,
            "guard": self.guard,
            "pace_seconds": self.settings.pace_seconds,
            "progress_cb": self.progress_cb,
            "sleep": self._sleep,
        }

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def calculate_price(self) -> Optional[PriceBreakdown]:
        req = self.request
        if not (req.include_price_indication and req.price_inputs_complete):
            return None
        price = PriceCalculator().calculate(
            req.awning_type, req.width, req.projection, req.floor, req.fabric_color or "default",
        )
        log.info("Price indication: area=%.2f m²  total=€%.2f", price.area, price.total_price)
        self._emit("price", "completed", f"Price indication €{price.total_price:.2f}")
        return price

    def _notifications_wanted(self) -> bool:
        req = self.request
        return bool(req.send_notifications and req.customer_email and self.dispatcher)

    def search_placement(self) -> PlacementOutcome:
        req = self.request
        strategy = PlacementStrategy(
            awning_type=req.awning_type,
            fabric_color=req.fabric_color,
            pattern=req.pattern,
            stripe_ratio=req.stripe_ratio,
        )
        self._emit("placement", "started", "Placing the awning…")
        outcome = PlacementSearch(strategy, **self._engine_kwargs()).run(req.image)
        self._emit("placement", "completed", f"Best placement {outcome.best.label}: {outcome.score}",
                   {"score": outcome.score})
        return outcome

    def refine_color(self, placement: PlacementOutcome) -> Optional[ColorOutcome]:
        req = self.request
        if not req.color_requested:
            return None
        if placement.score < COLOR_GATE:
            log.info("Placement score %d below %d; skipping colour editing", placement.score, COLOR_GATE)
            self._emit("color", "skipped", f"Placement score {placement.score} too low for colour editing")
            return None

        strategy = ColorStrategy(
            fabric_color=req.fabric_color,
            pattern=req.pattern,
            stripe_ratio=req.stripe_ratio,
            has_swatch=req.swatch is not None,
        )
        search = ColorRefinementSearch(
            strategy,
            error_backoff_seconds=self.settings.error_backoff_seconds,
            **self._engine_kwargs(),
        )
        self._emit("color", "started", f"Applying {req.fabric_color} ({req.pattern.value})…")
        outcome = search.run(req.image, placement.image, req.swatch)
        self._emit("color", "completed", f"Colour score {outcome.score}",
                   {"score": outcome.score, "goal_met": outcome.goal_met})
        return outcome

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(self) -> Dict:
        """Execute the pipeline. Returns the JSON-ready result dict."""
        req = self.request
        start = time.time()
        log.info("Pipeline start: request=%s", self.request_id)

        price = self.calculate_price()

        start_sent = False
        if self._notifications_wanted():
            start_sent = self.dispatcher.notify_started(
                req.customer_email, req.customer_name, req.awning_type,
                with_price=req.include_price_indication,
            )

        placement = self.search_placement()
        color = self.refine_color(placement)

        final_image = color.image if color else placement.image
        color_score = color.score if color else 0
        goal = determine_goal(placement.score, color_score, req.color_requested, self.goal_policy)
        log.info(
            "Final: placement=%d  color=%d  overall=%d  goal_achieved=%s  policy=%s",
            placement.score, color_score, goal.overall_score, goal.achieved, self.goal_policy.value,
        )

        completion_sent = False
        if self._notifications_wanted():
            completion_sent = self.dispatcher.notify_completed(
                req.customer_email, req.customer_name, req.awning_type, final_image,
                goal.achieved, goal.overall_score, price,
            )

        duration = time.time() - start
        try:
            append_cost_log(self.request_id, req.describe(), duration, self.cost_tracker)
        except OSError as exc:
            log.warning("Could not write cost log: %s", exc)

        self._emit("pipeline", "completed", f"Done in {duration:.0f}s, score {goal.overall_score}",
                   {"duration": duration, "score": goal.overall_score})

        return {
            "success": True,
            "processed_image": final_image.to_data_uri(),
            "placement_score": placement.score,
            "color_score": color_score,
            "overall_score": goal.overall_score,
            "goal_achieved": goal.achieved,
            "awning_type": req.awning_type.value,
            "fabric_color": req.fabric_color,
            "price_data": price.to_dict() if price else None,
            "debug": self._debug_trace(placement, color, price, start_sent, completion_sent, duration),
        }

    def _debug_trace(
        self,
        placement: PlacementOutcome,
        color: Optional[ColorOutcome],
        price: Optional[PriceBreakdown],
        start_sent: bool,
        completion_sent: bool,
        duration: float,
    ) -> Dict:
        req = self.request
        color_iterations = []
        if color:
            for item in color.iterations:
                entry = item.trace()
                entry["iteration"] = item.attempt
                entry["goal_met"] = item.goal_met
                color_iterations.append(entry)

        if price:
            price_info: Dict[str, Any] = {
                "included": True,
                "total_price": price.total_price,
                "calculated_at": price.calculated_at,
            }
        else:
            reason = "Not requested" if not req.include_price_indication else "Missing required parameters"
            price_info = {"included": False, "reason": reason}

        return {
            "request_id": self.request_id,
            "placement_variations": [c.trace() for c in placement.attempts],
            "best_placement": placement.best.label,
            "placement_early_exit": placement.early_exit,
            "color_phase": {
                "enabled": color is not None,
                "pattern_type": req.pattern.value,
                "best_iteration": color.best_iteration if color else None,
                "goal_met": color.goal_met if color else False,
            },
            "color_iterations": color_iterations,
            "email_notifications": {
                "start_email_sent": start_sent,
                "completion_email_sent": completion_sent,
                "service_available": self.dispatcher is not None,
                "notifications_enabled": req.send_notifications,
                "customer_email_provided": bool(req.customer_email),
            },
            "price_calculation": price_info,
            "goal_policy": self.goal_policy.value,
            "costs": self.cost_tracker.summary(),
            "duration": round(duration, 2),
        }
