from __future__ import annotations

import logging
import math
import os
import threading
from concurrent.futures import Future, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Literal, Mapping, Optional, cast

from pydantic import BaseModel, ConfigDict, Field, model_validator

from grating_app.adapters.solver_rcwa.engine_rigorous1d import GratingSolver
from grating_app.domain.models import FAILURE, SUCCESS, EvaluationResult, MathOptions
from grating_app.domain.ports import MaterialOptics
from grating_app.domain.profiles import GratingProfile

__all__ = [
    "HC_EV_UM",
    "SweepMode",
    "SweepStatus",
    "SweepPlan",
    "SweepStep",
    "StepRecord",
    "SweepState",
    "run_sweep",
]

logger = logging.getLogger(__name__)

HC_EV_UM = 1.23984172  # h*c in eV*um

SweepMode = Literal["constantIncidence", "constantIncludedAngle", "constantWavelength"]
SweepStatus = Literal["inProgress", "someFailed", "allFailed", "succeeded"]

# ---------------------------
# Plan
# ---------------------------


@dataclass(frozen=True)
class SweepStep:
    index: int
    value: float  # swept value in input units (wavelength, eV or degrees)
    angle_deg: float
    wavelength_um: float


class SweepPlan(BaseModel):
    """
    What to sweep. `min`/`max`/`increment` (and `wavelength`) are in the
    input units: um, or photon energy in eV when `eV` is set; degrees in
    constantWavelength mode.
    """

    model_config = ConfigDict(frozen=True)

    mode: SweepMode
    min: float
    max: float
    increment: float = Field(gt=0.0)
    eV: bool = False
    incidence_angle_deg: Optional[float] = None
    included_angle_deg: Optional[float] = None
    to_order: Optional[int] = None
    wavelength: Optional[float] = None

    @model_validator(mode="after")
    def _check_mode_fields(self) -> SweepPlan:
        if self.max < self.min:
            raise ValueError(f"max ({self.max}) must be >= min ({self.min})")
        required = {
            "constantIncidence": ("incidence_angle_deg",),
            "constantIncludedAngle": ("included_angle_deg", "to_order"),
            "constantWavelength": ("wavelength",),
        }[self.mode]
        missing = [name for name in required if getattr(self, name) is None]
        if missing:
            raise ValueError(f"mode {self.mode} requires {', '.join(missing)}")
        return self

    @property
    def total_steps(self) -> int:
        # 1e-9 guards against (max-min)/inc landing just below an integer
        return int(math.floor((self.max - self.min) / self.increment + 1e-9)) + 1

    def to_wavelength_um(self, value: float) -> float:
        return HC_EV_UM / value if self.eV else float(value)

    def step(self, index: int, period_um: float) -> SweepStep:
        value = float(self.min + self.increment * index)
        if self.mode == "constantWavelength":
            lam = self.to_wavelength_um(cast(float, self.wavelength))
            angle = value
        else:
            lam = self.to_wavelength_um(value)
            if self.mode == "constantIncidence":
                angle = float(cast(float, self.incidence_angle_deg))
            else:
                angle = included_angle_incidence(
                    lam, period_um, float(self.included_angle_deg or 0.0), int(self.to_order or 0)
                )
        return SweepStep(index=index, value=value, angle_deg=angle, wavelength_um=lam)

    def steps(self, period_um: float) -> list[SweepStep]:
        return [self.step(i, period_um) for i in range(self.total_steps)]


def included_angle_incidence(
    wavelength_um: float, period_um: float, included_angle_deg: float, order: int
) -> float:
    """
    Incidence angle (deg) keeping a constant included angle K between the incident
    beam and diffraction order m (monochromator geometry):

        theta = asin(-m * lambda / (2 * period * cos(K/2))) + K/2

    Returns NaN when the order cannot reach that geometry (|argument| > 1).
    """
    half = math.radians(included_angle_deg) / 2.0
    arg = -order * wavelength_um / (2.0 * period_um * math.cos(half))
    if abs(arg) > 1.0:
        return float("nan")
    return math.degrees(math.asin(arg) + half)


# ---------------------------
# State
# ---------------------------


@dataclass(frozen=True)
class StepRecord:
    step: SweepStep
    result: EvaluationResult


@dataclass(frozen=True)
class SweepState:
    """Immutable snapshot of a sweep; rebuilt (never mutated) on each completed step."""

    total_steps: int
    records: Mapping[int, StepRecord] = field(default_factory=lambda: MappingProxyType({}))
    cancelled: bool = False

    def with_record(self, record: StepRecord) -> SweepState:
        merged = dict(self.records)
        merged[record.step.index] = record
        return SweepState(self.total_steps, MappingProxyType(merged), self.cancelled)

    def with_cancelled(self) -> SweepState:
        return SweepState(self.total_steps, self.records, True)

    @property
    def completed_steps(self) -> int:
        return len(self.records)

    @property
    def any_failure(self) -> bool:
        return any(r.result.status == FAILURE for r in self.records.values())

    @property
    def any_success(self) -> bool:
        return any(r.result.status != FAILURE for r in self.records.values())

    @property
    def status(self) -> SweepStatus:
        if self.completed_steps < self.total_steps:
            return "inProgress"
        if not self.any_failure:
            return "succeeded"
        return "someFailed" if self.any_success else "allFailed"

    def ordered(self) -> list[StepRecord]:
        return [self.records[i] for i in sorted(self.records)]

    def counts(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for r in self.records.values():
            out[r.result.status] = out.get(r.result.status, 0) + 1
        return out


# ---------------------------
# Driver
# ---------------------------

ProgressCallback = Callable[[SweepState], None]


def _evaluate_step(
    solver: GratingSolver,
    profile: GratingProfile,
    step: SweepStep,
    options: MathOptions,
    debug: bool,
) -> StepRecord:
    # module level so the process pool can pickle it
    result = solver.evaluate(profile, step.angle_deg, step.wavelength_um, options, debug=debug)
    return StepRecord(step=step, result=result)


def _collect(fut: Future[StepRecord], step: SweepStep, options: MathOptions) -> StepRecord:
    """Result of one pooled step; a worker-side error fails that step only."""
    try:
        return fut.result()
    except Exception as e:  # noqa: BLE001
        # e.g. optics holding a local callable cannot be pickled for a process pool
        logger.warning("step %d (%g) raised in the worker pool: %r", step.index, step.value, e)
        return StepRecord(
            step=step,
            result=EvaluationResult.failure(options.orders(), f"{type(e).__name__}: {e}"),
        )


def run_sweep(
    profile: GratingProfile,
    plan: SweepPlan,
    options: MathOptions,
    optics: MaterialOptics,
    *,
    n_ambient: float = 1.0,
    workers: int | None = None,
    executor: Literal["process", "thread"] = "process",
    on_progress: ProgressCallback | None = None,
    cancel: threading.Event | None = None,
    debug: bool = False,
) -> SweepState:
    """
    Evaluate every step of `plan` and return the final SweepState.

    Steps run on a fixed pool of `workers` (default os.cpu_count()); with one
    worker they run inline in the calling thread. `on_progress` is called from
    the calling thread only, after each completed step. Setting `cancel` stops
    the sweep between steps: pending steps are dropped, running ones finish.
    """
    steps = plan.steps(profile.period_um)
    solver = GratingSolver(optics=optics, n_ambient=n_ambient)
    state = SweepState(total_steps=len(steps))
    n_workers = max(1, int(workers if workers is not None else (os.cpu_count() or 1)))
    logger.info(
        "sweep %s: %d steps, N=%d, %s, %d worker(s)",
        plan.mode,
        len(steps),
        options.N,
        options.polarization,
        n_workers,
    )

    def _done(s: SweepState, record: StepRecord) -> SweepState:
        s = s.with_record(record)
        if record.result.status != SUCCESS:
            logger.info("step %d (%g): %s %s", record.step.index, record.step.value,
                        record.result.status, record.result.error)
        if on_progress is not None:
            on_progress(s)
        return s

    if n_workers == 1:
        for step in steps:
            if cancel is not None and cancel.is_set():
                logger.info("sweep cancelled after %d steps", state.completed_steps)
                return state.with_cancelled()
            state = _done(state, _evaluate_step(solver, profile, step, options, debug))
        return state

    pool_cls = ProcessPoolExecutor if executor == "process" else ThreadPoolExecutor
    with pool_cls(max_workers=n_workers) as pool:
        futures: dict[Future[StepRecord], SweepStep] = {
            pool.submit(_evaluate_step, solver, profile, step, options, debug): step
            for step in steps
        }
        for fut in as_completed(futures):
            if fut.cancelled():
                continue
            state = _done(state, _collect(fut, futures[fut], options))
            if cancel is not None and cancel.is_set() and not state.cancelled:
                for f in futures:
                    f.cancel()
                state = state.with_cancelled()
                logger.info("sweep cancelled after %d steps", state.completed_steps)
    return state
