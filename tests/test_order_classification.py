from __future__ import annotations

import numpy as np
import pytest

from grating_app.adapters.solver_rcwa.coupling import (
    Efficiencies,
    check_conservation,
    extract_efficiencies,
    power_from_amplitudes,
)
from grating_app.adapters.solver_rcwa.grating1d import classify_orders, kx_orders
from grating_app.domain.errors import ConservationViolation

TOL = 1e-9


def test_grating_equation() -> None:
    orders = np.arange(-2, 3)
    kx = kx_orders(0.5, 30.0, 1.0, orders)
    assert np.allclose(kx, 0.5 + 0.5 * orders)


@pytest.mark.parametrize("kx", [1.0, 1.0 - 0.5 * TOL, 1.0 + 0.5 * TOL])
def test_rayleigh_boundary_resolves_to_evanescent(kx: float) -> None:
    s = classify_orders(np.array([0]), np.array([kx]), 1.0, TOL)
    assert not s.propagating[0]
    assert s.degenerate[0]
    assert s.beta[0].real == 0.0
    assert s.beta[0].imag >= np.sqrt(TOL)
    assert np.isfinite(s.beta).all()
    assert s.degenerate_orders() == [0]


def test_clear_cases_are_not_degenerate() -> None:
    s = classify_orders(np.array([-1, 0, 1]), np.array([-0.5, 0.0, 1.2]), 1.0, TOL)
    assert list(s.propagating) == [True, True, False]
    assert not s.degenerate.any()
    assert s.beta[0] == pytest.approx(np.sqrt(0.75))
    assert s.beta[2] == pytest.approx(1j * np.sqrt(1.2**2 - 1.0))
    assert s.lossless


def test_absorbing_medium_uses_decaying_branch() -> None:
    n = 0.95 + 0.03j
    s = classify_orders(np.arange(3), np.array([0.2, 0.9, 1.5]), n, TOL)
    assert not s.lossless
    assert np.all(s.beta.imag > 0.0)
    assert list(s.propagating) == [True, True, False]


def test_power_requires_propagating_incidence() -> None:
    with pytest.raises(ValueError):
        power_from_amplitudes(np.ones(2), np.ones(2), 1j * 0.1)


def test_evanescent_orders_carry_exactly_zero() -> None:
    orders = np.arange(-1, 2)
    amb = classify_orders(orders, np.array([-1.5, 0.2, 1.0]), 1.0, TOL)
    sub = classify_orders(orders, np.array([-1.5, 0.2, 1.0]), 1.45, TOL)
    r = np.array([0.3 + 0.1j, 0.5, 0.7j])
    t = np.array([0.2, 0.4, 0.1])
    eff = extract_efficiencies(r, t, amb, sub, "TE", incident_index=1)
    assert eff.reflected[0] == 0.0 and eff.reflected[2] == 0.0
    assert eff.reflected[1] == pytest.approx(0.25)
    assert eff.transmitted[0] == 0.0
    assert eff.transmitted[2] > 0.0  # |kx| = 1 still propagates in glass


def test_conservation_check_policies() -> None:
    zeros = np.zeros(1)
    check_conservation(Efficiencies(zeros, zeros, 1.0 + 1e-9, lossless=True), 1e-6)
    check_conservation(Efficiencies(zeros, zeros, 0.6, lossless=False), 1e-6)
    with pytest.raises(ConservationViolation) as info:
        check_conservation(Efficiencies(zeros, zeros, 0.98, lossless=True), 1e-6)
    assert info.value.residual == pytest.approx(0.02)
    with pytest.raises(ConservationViolation):
        check_conservation(Efficiencies(zeros, zeros, 1.01, lossless=False), 1e-6)
