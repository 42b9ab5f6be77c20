from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from grating_app.domain.errors import ConvergenceError


@dataclass(frozen=True)
class SMatrix:
    """
    Scattering matrix of a slab of the stack, in the modal bases on either side.

    Outgoing = S * incoming with
        S11 reflection seen from the top     S12 transmission bottom -> top
        S21 transmission top -> bottom       S22 reflection seen from the bottom
    Every block is (M, M) complex128.
    """

    S11: np.ndarray
    S12: np.ndarray
    S21: np.ndarray
    S22: np.ndarray

    @property
    def n(self) -> int:
        return int(self.S11.shape[0])


def solve_checked(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """a^{-1} b by LU; a singular system is a convergence failure of the stack."""
    try:
        return np.linalg.solve(a, b)
    except np.linalg.LinAlgError as e:
        raise ConvergenceError(f"singular matrix in scattering-matrix recursion: {e}") from e


def _right_divide(x: np.ndarray, a: np.ndarray) -> np.ndarray:
    # x a^{-1} without forming the inverse
    return solve_checked(a.T, x.T).T


def s_identity(n: int) -> SMatrix:
    """Transparent slab of zero thickness; neutral element of redheffer_star."""
    zero = np.zeros((n, n), dtype=np.complex128)
    one = np.eye(n, dtype=np.complex128)
    return SMatrix(S11=zero, S12=one, S21=one.copy(), S22=zero.copy())


def s_propagate(kz: np.ndarray, thickness_um: float) -> SMatrix:
    """
    Phase slab: mode j picks up exp(+i kz_j d) in either direction, no reflection.

    kz in rad/um with Im(kz) >= 0, d in um. Only decaying factors |.| <= 1 are
    formed, which is what keeps thick evanescent layers stable.
    """
    phase = np.diag(np.exp(1j * np.asarray(kz, dtype=np.complex128) * np.complex128(thickness_um)))
    zero = np.zeros_like(phase)
    return SMatrix(S11=zero, S12=phase, S21=phase.copy(), S22=zero.copy())


def redheffer_star(A: SMatrix, B: SMatrix) -> SMatrix:
    """
    Cascade A (upper) with B (lower): the multiple reflections between them are
    summed in closed form,

        C11 = A11 + A12 (I - B11 A22)^{-1} B11 A21
        C12 = A12 (I - B11 A22)^{-1} B12
        C21 = B21 (I - A22 B11)^{-1} A21
        C22 = B22 + B21 (I - A22 B11)^{-1} A22 B12
    """
    one = np.eye(A.n, dtype=np.complex128)
    a12_x = _right_divide(A.S12, one - B.S11 @ A.S22)
    b21_x = _right_divide(B.S21, one - A.S22 @ B.S11)
    return SMatrix(
        S11=A.S11 + a12_x @ B.S11 @ A.S21,
        S12=a12_x @ B.S12,
        S21=b21_x @ A.S21,
        S22=B.S22 + b21_x @ A.S22 @ B.S12,
    )


def stack_star(parts: Sequence[SMatrix]) -> SMatrix:
    """Fold parts[0] * parts[1] * ... from the top of the stack down."""
    if not parts:
        raise ValueError("stack_star: need at least one S-matrix")
    total = parts[0]
    for S in parts[1:]:
        total = redheffer_star(total, S)
    return total
