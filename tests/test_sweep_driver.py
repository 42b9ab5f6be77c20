from __future__ import annotations

import math
import threading

import numpy as np
import pytest
from pydantic import ValidationError

from grating_app.adapters.materials.builtin import MaterialTable
from grating_app.domain.models import FAILURE, SUCCESS, EvaluationResult, MathOptions
from grating_app.domain.profiles import BlazedProfile, RectangularProfile
from grating_app.orchestration.sweep import (
    HC_EV_UM,
    StepRecord,
    SweepPlan,
    SweepState,
    SweepStep,
    included_angle_incidence,
    run_sweep,
)


@pytest.fixture(scope="module")
def ev_plan() -> SweepPlan:
    return SweepPlan(
        mode="constantIncidence", min=100.0, max=300.0, increment=5.0, eV=True,
        incidence_angle_deg=88.0,
    )


def test_step_count_and_energy_conversion(ev_plan: SweepPlan) -> None:
    assert ev_plan.total_steps == 41
    steps = ev_plan.steps(1.6)
    assert steps[0].value == 100.0 and steps[-1].value == 300.0
    assert steps[0].wavelength_um == pytest.approx(HC_EV_UM / 100.0)
    assert all(s.angle_deg == 88.0 for s in steps)


def test_step_count_guards_round_down() -> None:
    plan = SweepPlan(mode="constantWavelength", min=0.0, max=0.3, increment=0.1, wavelength=0.5)
    assert plan.total_steps == 4
    s = plan.step(3, 1.0)
    assert s.angle_deg == pytest.approx(0.3)
    assert s.wavelength_um == 0.5


def test_plan_requires_mode_fields() -> None:
    with pytest.raises(ValidationError):
        SweepPlan(mode="constantIncidence", min=1.0, max=2.0, increment=0.5)
    with pytest.raises(ValidationError):
        SweepPlan(mode="constantIncludedAngle", min=1.0, max=2.0, increment=0.5, included_angle_deg=170.0)
    with pytest.raises(ValidationError):
        SweepPlan(mode="constantWavelength", min=2.0, max=1.0, increment=0.5, wavelength=0.5)
    with pytest.raises(ValidationError):
        SweepPlan(mode="constantWavelength", min=1.0, max=2.0, increment=0.0, wavelength=0.5)


def test_included_angle_satisfies_grating_equation() -> None:
    lam, period, kappa, m = 0.01, 1.6, 170.0, -1
    theta = included_angle_incidence(lam, period, kappa, m)
    a = math.radians(theta)
    b = math.radians(kappa) - a
    assert math.sin(b) - math.sin(a) == pytest.approx(m * lam / period)
    assert included_angle_incidence(lam, period, kappa, 0) == pytest.approx(kappa / 2.0)
    assert math.isnan(included_angle_incidence(5.0, 1.0, 0.0, 1))


def _record(index: int, ok: bool) -> StepRecord:
    orders = np.arange(-1, 2)
    if ok:
        result = EvaluationResult(SUCCESS, orders, np.zeros(3), np.zeros(3))
    else:
        result = EvaluationResult.failure(orders, "x")
    return StepRecord(SweepStep(index, float(index), 0.0, 1.0), result)


def test_sweep_state_status_vocabulary() -> None:
    s0 = SweepState(total_steps=2)
    assert s0.status == "inProgress" and s0.completed_steps == 0
    s1 = s0.with_record(_record(1, True))
    assert s0.completed_steps == 0  # immutable
    assert s1.status == "inProgress"
    assert s1.with_record(_record(0, True)).status == "succeeded"
    assert s1.with_record(_record(0, False)).status == "someFailed"
    both_bad = s0.with_record(_record(0, False)).with_record(_record(1, False))
    assert both_bad.status == "allFailed"
    assert [r.step.index for r in s1.with_record(_record(0, True)).ordered()] == [0, 1]


def test_end_to_end_blazed_gold_sweep(
    au_blazed: BlazedProfile, ev_plan: SweepPlan, options_te: MathOptions, optics: MaterialTable
) -> None:
    seen: list[int] = []
    state = run_sweep(
        au_blazed, ev_plan, options_te, optics, workers=1,
        on_progress=lambda s: seen.append(s.completed_steps),
    )
    assert state.total_steps == 41 and state.completed_steps == 41
    assert seen == list(range(1, 42))
    statuses = [r.result.status for r in state.ordered()]
    assert all(s in ("Success", "PartialFailure", "Failure") for s in statuses)
    expected = "succeeded" if FAILURE not in statuses else (
        "allFailed" if set(statuses) == {FAILURE} else "someFailed"
    )
    assert state.status == expected
    for rec in state.ordered():
        assert rec.result.efficiency.shape == (11,)


def test_parallel_sweep_matches_inline(optics: MaterialTable) -> None:
    p = RectangularProfile(period_um=1.0, material="Glass", depth_um=0.2, valley_width_um=0.4)
    plan = SweepPlan(mode="constantWavelength", min=0.0, max=40.0, increment=10.0, wavelength=0.6)
    opts = MathOptions(N=4)
    inline = run_sweep(p, plan, opts, optics, workers=1)
    threaded = run_sweep(p, plan, opts, optics, workers=3, executor="thread")
    assert threaded.status == inline.status == "succeeded"
    for a, b in zip(inline.ordered(), threaded.ordered()):
        assert a.step == b.step
        assert np.allclose(a.result.efficiency, b.result.efficiency)


def test_process_pool_sweep_matches_inline(optics: MaterialTable) -> None:
    p = RectangularProfile(period_um=1.0, material="Glass", depth_um=0.2, valley_width_um=0.4)
    plan = SweepPlan(mode="constantWavelength", min=0.0, max=30.0, increment=10.0, wavelength=0.6)
    opts = MathOptions(N=3)
    inline = run_sweep(p, plan, opts, optics, workers=1)
    pooled = run_sweep(p, plan, opts, optics, workers=2)
    assert pooled.status == "succeeded"
    for a, b in zip(inline.ordered(), pooled.ordered()):
        assert np.allclose(a.result.efficiency, b.result.efficiency)


def test_worker_pool_error_fails_only_that_step() -> None:
    # a local lambda cannot be pickled for the default process pool
    optics = MaterialTable({"Dispersive": lambda lam: 1.45 + 0.0j})
    p = RectangularProfile(period_um=1.0, material="Dispersive", depth_um=0.2, valley_width_um=0.4)
    plan = SweepPlan(mode="constantWavelength", min=0.0, max=20.0, increment=10.0, wavelength=0.6)
    state = run_sweep(p, plan, MathOptions(N=3), optics, workers=2)
    assert state.completed_steps == state.total_steps == 3
    assert state.status == "allFailed"
    for rec in state.ordered():
        assert rec.result.error
        assert np.isnan(rec.result.efficiency).all()


def test_callable_optics_run_on_threads() -> None:
    optics = MaterialTable({"Dispersive": lambda lam: 1.45 + 0.0j})
    p = RectangularProfile(period_um=1.0, material="Dispersive", depth_um=0.2, valley_width_um=0.4)
    plan = SweepPlan(mode="constantWavelength", min=0.0, max=20.0, increment=10.0, wavelength=0.6)
    state = run_sweep(p, plan, MathOptions(N=3), optics, workers=2, executor="thread")
    assert state.status == "succeeded"


def test_cancel_stops_between_steps(optics: MaterialTable) -> None:
    p = RectangularProfile(period_um=1.0, material="Glass", depth_um=0.2, valley_width_um=0.4)
    plan = SweepPlan(mode="constantWavelength", min=0.0, max=50.0, increment=10.0, wavelength=0.6)
    cancel = threading.Event()

    def _stop_after_two(s: SweepState) -> None:
        if s.completed_steps == 2:
            cancel.set()

    state = run_sweep(p, plan, MathOptions(N=3), optics, workers=1,
                      on_progress=_stop_after_two, cancel=cancel)
    assert state.cancelled
    assert state.completed_steps == 2
    assert state.status == "inProgress"


def test_unknown_material_fails_every_step(ev_plan: SweepPlan, optics: MaterialTable) -> None:
    p = BlazedProfile(period_um=1.6, material="Unobtainium", blaze_angle_deg=3.2, anti_blaze_angle_deg=30.0)
    plan = ev_plan.model_copy(update={"max": 110.0})
    state = run_sweep(p, plan, MathOptions(N=2), optics, workers=1)
    assert state.completed_steps == 3
    assert state.status == "allFailed"
