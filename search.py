"""Bounded generate → evaluate → score searches over the image oracle.

Two searches share one engine:

``PlacementSearch``
    Two fixed attempts (A, B) from the original photo; if neither reaches the
    threshold, up to three hill-climbing rounds (C..E) that edit the running
    best image, stopping at the first strict improvement that reaches the
    threshold.

``ColorRefinementSearch``
    Up to five fabric edits on top of the chosen placement, each scored with
    the colour rubric; stops once the oracle reports the goal met and the
    score clears the goal threshold.

All oracle calls are strictly sequential and each one is followed by the
pacing delay, whatever its outcome. A failed call is recorded as a
zero-score attempt and consumes one unit of the budget.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from catalog import AwningType, PatternType
from errors import OracleError, PlacementExhaustedError
from imaging import DimensionGuard, ImageBuffer
from oracles import EDIT_SAMPLING, PLACEMENT_SAMPLING, ImageEvaluator, ImageGenerator
from prompts import (
    build_color_edit_prompt,
    build_color_evaluation_prompt,
    build_placement_evaluation_prompt,
    build_placement_prompt,
    build_refinement_prompt,
)
from scoring import calculate_color_iteration_score, compute_placement_score

log = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict], None]
Scorer = Callable[[Optional[Dict[str, Any]]], Tuple[int, Tuple[str, ...]]]


# ---------------------------------------------------------------------------
# Search records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CandidateResult:
    """Outcome of one attempt. Never mutated after it is logged."""

    attempt: int
    label: str
    image: Optional[ImageBuffer]
    rubric: Optional[Dict[str, Any]] = None
    score: int = 0
    error: Optional[str] = None
    issues: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.score > 0 and self.image is None:
            raise ValueError(f"{self.label}: a scored candidate must carry an image")

    @property
    def usable(self) -> bool:
        return self.image is not None and self.score > 0

    @property
    def goal_met(self) -> bool:
        return bool(self.rubric) and self.rubric.get("goal_met") is True

    def trace(self) -> Dict[str, Any]:
        return {
            "attempt": self.attempt,
            "label": self.label,
            "score": self.score,
            "has_image": self.image is not None,
            "error": self.error,
            "issues": list(self.issues),
            "evaluation": self.rubric,
        }


@dataclass
class SearchState:
    """Mutable bookkeeping for one search invocation."""

    base_image: ImageBuffer
    best_score: int = 0
    best_image: Optional[ImageBuffer] = None
    attempts: int = 0
    log: List[CandidateResult] = field(default_factory=list)

    def record(self, candidate: CandidateResult) -> bool:
        """Append ``candidate``; return True if it strictly beat the running best."""
        self.log.append(candidate)
        self.attempts += 1
        if candidate.image is not None and candidate.score > self.best_score:
            self.best_score = candidate.score
            self.best_image = candidate.image
            return True
        return False

    def select_best(self) -> Optional[CandidateResult]:
        """Highest-scoring usable candidate; the earliest one wins a tie."""
        best: Optional[CandidateResult] = None
        for candidate in self.log:
            if candidate.usable and (best is None or candidate.score > best.score):
                best = candidate
        return best


# ---------------------------------------------------------------------------
# Shared engine
# ---------------------------------------------------------------------------

class SearchEngine:
    """Oracle plumbing shared by both searches: pacing, guard, scoring, events."""

    def __init__(
        self,
        generator: ImageGenerator,
        evaluator: ImageEvaluator,
        guard: DimensionGuard,
        pace_seconds: float = 1.0,
        progress_cb: Optional[ProgressCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.generator = generator
        self.evaluator = evaluator
        self.guard = guard
        self.pace_seconds = pace_seconds
        self.progress_cb = progress_cb
        self._sleep = sleep

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def _emit(self, stage: str, status: str, message: str, data: Optional[Dict] = None) -> None:
        if not self.progress_cb:
            return
        event: Dict[str, Any] = {"stage": stage, "status": status, "message": message, "ts": time.time()}
        if data:
            event["data"] = data
        self.progress_cb(event)

    def _attempt(
        self,
        attempt: int,
        label: str,
        prompt: str,
        images: Sequence[ImageBuffer],
        reference: ImageBuffer,
        evaluation_prompt: str,
        scorer: Scorer,
        sampling: Dict[str, float],
    ) -> CandidateResult:
        """generate → guard → evaluate → score, as one logged attempt."""
        try:
            image = self.generator.generate(prompt, images, stage=label, sampling=sampling)
        except OracleError as exc:
            log.warning("%s: generation failed: %s", label, exc)
            return CandidateResult(attempt, label, None, error=str(exc))
        finally:
            self._pause(self.pace_seconds)

        if image is None:
            log.info("%s: no image generated", label)
            return CandidateResult(attempt, label, None, error="No image generated")

        guarded = self.guard.check(reference, image, label)
        if guarded.corrected_image is not None:
            log.debug("%s: applied dimension correction", label)
        image = guarded.resolve(image)

        try:
            rubric = self.evaluator.evaluate(evaluation_prompt, image, stage=label)
        except OracleError as exc:
            log.warning("%s: evaluation failed: %s", label, exc)
            return CandidateResult(attempt, label, image, error=f"Evaluation failed: {exc}")
        finally:
            self._pause(self.pace_seconds)

        score, issues = scorer(rubric)
        return CandidateResult(attempt, label, image, rubric, score, issues=issues)


# ---------------------------------------------------------------------------
# Placement search
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlacementStrategy:
    awning_type: AwningType
    fabric_color: Optional[str] = None
    pattern: PatternType = PatternType.SOLID
    stripe_ratio: Optional[str] = None
    threshold: int = 75
    initial_attempts: int = 2
    max_attempts: int = 5

    def variation(self, index: int) -> str:
        return chr(ord("A") + index)

    def prompt(self, index: int) -> str:
        base = build_placement_prompt(
            self.awning_type, self.variation(index),
            self.fabric_color, self.pattern, self.stripe_ratio,
        )
        if index < self.initial_attempts:
            return base
        return build_refinement_prompt(base, index - self.initial_attempts + 1)

    def label(self, index: int) -> str:
        suffix = "" if index < self.initial_attempts else " (Refined)"
        return f"Placement {index + 1}{suffix}"

    def evaluation_prompt(self) -> str:
        return build_placement_evaluation_prompt(self.awning_type)

    def score(self, rubric: Optional[Dict[str, Any]]) -> Tuple[int, Tuple[str, ...]]:
        issues = rubric.get("issues") if rubric else None
        notes = (issues,) if isinstance(issues, str) and issues else ()
        return compute_placement_score(rubric, self.awning_type), notes


class SearchPhase(Enum):
    INITIAL = "initial"
    REFINING = "refining"
    DONE = "done"


@dataclass(frozen=True)
class PlacementOutcome:
    best: CandidateResult
    attempts: Tuple[CandidateResult, ...]
    early_exit: bool

    @property
    def score(self) -> int:
        return self.best.score

    @property
    def image(self) -> ImageBuffer:
        if self.best.image is None:
            raise PlacementExhaustedError()
        return self.best.image


class PlacementSearch(SearchEngine):

    def __init__(self, strategy: PlacementStrategy, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.strategy = strategy

    def run(self, original: ImageBuffer) -> PlacementOutcome:
        strategy = self.strategy
        evaluation_prompt = strategy.evaluation_prompt()
        state = SearchState(base_image=original)
        phase = SearchPhase.INITIAL
        early_exit = False

        while phase is not SearchPhase.DONE:
            index = state.attempts
            refining = phase is SearchPhase.REFINING
            # initial attempts all start from the photo; refinements climb from the best so far
            base = (state.best_image or original) if refining else original
            label = strategy.label(index)

            self._emit("placement", "started", f"{label}…")
            candidate = self._attempt(
                index + 1, label, strategy.prompt(index), [base], original,
                evaluation_prompt, strategy.score, PLACEMENT_SAMPLING,
            )
            improved = state.record(candidate)
            log.info("%s: score=%d%s", label, candidate.score,
                     f"  error={candidate.error}" if candidate.error else "")
            self._emit("placement", "failed" if candidate.error else "completed",
                       f"{label}: score {candidate.score}", {"score": candidate.score})

            if state.attempts >= strategy.max_attempts:
                phase = SearchPhase.DONE
            elif not refining and state.attempts >= strategy.initial_attempts:
                if state.best_score >= strategy.threshold:
                    early_exit = True
                    phase = SearchPhase.DONE
                else:
                    log.info("Best placement %d below threshold %d; refining",
                             state.best_score, strategy.threshold)
                    phase = SearchPhase.REFINING
            elif refining and improved and state.best_score >= strategy.threshold:
                early_exit = True
                phase = SearchPhase.DONE

        best = state.select_best()
        if best is None:
            raise PlacementExhaustedError()
        log.info("Best placement: %s (score %d) after %d attempts", best.label, best.score, state.attempts)
        return PlacementOutcome(best, tuple(state.log), early_exit)


# ---------------------------------------------------------------------------
# Colour refinement search
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColorStrategy:
    fabric_color: str
    pattern: PatternType = PatternType.SOLID
    stripe_ratio: Optional[str] = None
    has_swatch: bool = False
    goal_threshold: int = 60
    max_iterations: int = 5

    def prompt(self, iteration: int) -> str:
        return build_color_edit_prompt(
            iteration, self.fabric_color, self.pattern, self.stripe_ratio, self.has_swatch,
        )

    def evaluation_prompt(self) -> str:
        return build_color_evaluation_prompt(self.fabric_color, self.pattern)

    def score(self, rubric: Optional[Dict[str, Any]]) -> Tuple[int, Tuple[str, ...]]:
        result = calculate_color_iteration_score(rubric, self.pattern)
        return result.score, result.issues


@dataclass(frozen=True)
class ColorOutcome:
    best: Optional[CandidateResult]
    iterations: Tuple[CandidateResult, ...]
    goal_met: bool
    fallback_image: ImageBuffer

    @property
    def score(self) -> int:
        return self.best.score if self.best else 0

    @property
    def image(self) -> ImageBuffer:
        if self.best and self.best.image is not None:
            return self.best.image
        return self.fallback_image

    @property
    def best_iteration(self) -> Optional[int]:
        return self.best.attempt if self.best else None


class ColorRefinementSearch(SearchEngine):

    def __init__(
        self,
        strategy: ColorStrategy,
        *args,
        error_backoff_seconds: float = 0.0,
        **kwargs,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.strategy = strategy
        self.error_backoff_seconds = error_backoff_seconds

    def run(
        self,
        original: ImageBuffer,
        placement_image: ImageBuffer,
        swatch: Optional[ImageBuffer] = None,
    ) -> ColorOutcome:
        strategy = self.strategy
        evaluation_prompt = strategy.evaluation_prompt()
        state = SearchState(base_image=placement_image)
        goal_met = False

        for iteration in range(1, strategy.max_iterations + 1):
            current = state.best_image or placement_image
            images = [original, current] + ([swatch] if swatch is not None else [])
            label = f"Color {iteration}"

            self._emit("color", "started", f"{label}…")
            candidate = self._attempt(
                iteration, label, strategy.prompt(iteration), images, current,
                evaluation_prompt, strategy.score, EDIT_SAMPLING,
            )
            state.record(candidate)
            log.info("%s: score=%d goal_met=%s issues=%s", label, candidate.score,
                     candidate.goal_met, ", ".join(candidate.issues) or "none")
            self._emit("color", "failed" if candidate.error else "completed",
                       f"{label}: score {candidate.score}", {"score": candidate.score})

            if candidate.error:
                self._pause(self.error_backoff_seconds)
                continue
            if candidate.goal_met and candidate.score >= strategy.goal_threshold:
                goal_met = True
                log.info("Colour goal reached at iteration %d (score %d)", iteration, candidate.score)
                break

        return ColorOutcome(state.select_best(), tuple(state.log), goal_met, placement_image)
