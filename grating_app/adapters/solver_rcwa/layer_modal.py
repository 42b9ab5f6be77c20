# grating_app/adapters/solver_rcwa/layer_modal.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from grating_app.domain.errors import ConvergenceError

from .rigorous1d import LayerModes
from .smatrix import SMatrix, solve_checked, s_propagate, stack_star

# ----------------------------
# Interfaces
# ----------------------------


def interface_smatrix(left: LayerModes, right: LayerModes) -> SMatrix:
    """
    Interface S-matrix between two regions, each in its own modal basis.

    Continuity of the tangential components at the interface,
        W_L (a+ + a-) = W_R (b+ + b-)
        V_L (a+ - a-) = V_R (b+ - b-),
    with X = W_L^{-1} W_R, Y = V_L^{-1} V_R, A = X + Y, B = X - Y gives

      S11 = B A^{-1}            S12 = (A - B A^{-1} B) / 2
      S21 = 2 A^{-1}            S22 = -A^{-1} B

    For two homogeneous media this reduces to the Fresnel coefficients.
    """
    X = solve_checked(left.W, right.W)
    Y = solve_checked(left.V, right.V)
    A = X + Y
    B = X - Y
    n = A.shape[0]
    I_mat = np.eye(n, dtype=np.complex128)

    A_inv = solve_checked(A, I_mat)
    A_inv_B = A_inv @ B
    S11 = B @ A_inv
    S12 = 0.5 * (A - B @ A_inv_B)
    S21 = 2.0 * A_inv
    S22 = -A_inv_B
    return SMatrix(S11=S11, S12=S12, S21=S21, S22=S22)


# ----------------------------
# Stack
# ----------------------------


@dataclass(frozen=True)
class MatchedAmplitudes:
    r: np.ndarray  # (M,) reflected order amplitudes in the ambient
    t: np.ndarray  # (M,) transmitted order amplitudes in the substrate
    smatrix: SMatrix


def stack_smatrix(
    ambient: LayerModes,
    layers: Sequence[tuple[LayerModes, float]],
    substrate: LayerModes,
    k0: float,
) -> SMatrix:
    """
    Global S-matrix ambient | layer_1 | ... | layer_S | substrate.

    Each lamella contributes interface * propagation; the chain is folded with
    the Redheffer star product so only decaying exponentials appear.
    `layers` holds (modes, thickness_um) pairs ordered from the crest down.
    """
    parts: list[SMatrix] = []
    prev = ambient
    for modes, thickness_um in layers:
        parts.append(interface_smatrix(prev, modes))
        parts.append(s_propagate(modes.gamma * float(k0), float(thickness_um)))
        prev = modes
    parts.append(interface_smatrix(prev, substrate))
    return stack_star(parts)


def match_boundaries(
    ambient: LayerModes,
    layers: Sequence[tuple[LayerModes, float]],
    substrate: LayerModes,
    k0: float,
    incident: np.ndarray,
) -> MatchedAmplitudes:
    """Reflected and transmitted amplitudes for an incident order vector from the ambient."""
    S = stack_smatrix(ambient, layers, substrate, k0)
    inc = np.asarray(incident, dtype=np.complex128)
    r = S.S11 @ inc
    t = S.S21 @ inc
    if not (np.all(np.isfinite(r)) and np.all(np.isfinite(t))):
        raise ConvergenceError("boundary matching produced non-finite amplitudes")
    return MatchedAmplitudes(r=r, t=t, smatrix=S)
