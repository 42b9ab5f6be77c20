from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def kx_orders(
    wavelength_um: float,
    theta_deg: float,
    period_um: float,
    orders: np.ndarray,
    n_medium: float = 1.0,
) -> np.ndarray:
    """Normalized in-plane wavevectors kx_m / k0 from the grating equation.

    kx_m = n_medium * sin(theta) + m * lambda / period
    """
    s = float(n_medium) * np.sin(np.deg2rad(float(theta_deg)))
    return s + (float(wavelength_um) / float(period_um)) * np.asarray(orders, dtype=float)


@dataclass(frozen=True)
class OrderSet:
    """Orders seen from one homogeneous half-space (ambient or substrate)."""

    orders: np.ndarray  # (M,) int
    kx: np.ndarray  # (M,) float, normalized
    beta: np.ndarray  # (M,) complex, normalized kz with Im >= 0
    propagating: np.ndarray  # (M,) bool
    degenerate: np.ndarray  # (M,) bool, inside the tolerance band at |kx| = Re(n)
    n_medium: complex

    @property
    def lossless(self) -> bool:
        return np.imag(self.n_medium) == 0.0

    def degenerate_orders(self) -> list[int]:
        return [int(m) for m in self.orders[self.degenerate]]


def principal_beta(n_medium: complex, kx: np.ndarray) -> np.ndarray:
    """kz/k0 = sqrt(n^2 - kx^2) on the branch Im >= 0 (decaying away from the grating)."""
    kz = np.sqrt(np.complex128(n_medium) ** 2 - np.asarray(kx, dtype=np.complex128) ** 2)
    flip = np.angle(kz) < -1e-12
    kz[flip] = -kz[flip]
    return kz


def classify_orders(
    orders: np.ndarray, kx: np.ndarray, n_medium: complex, tol: float
) -> OrderSet:
    """Propagating/evanescent classification with an explicit tolerance band.

    An order propagates iff |kx| < Re(n) - tol. Orders with | |kx| - Re(n) | <= tol
    sit on the Rayleigh boundary (grazing exit); they are classified evanescent
    and their beta is floored at i*sqrt(tol) so no admittance vanishes.
    For a lossless medium propagating beta are real and evanescent beta purely
    imaginary; for an absorbing medium the principal branch is used.
    """
    kx = np.asarray(kx, dtype=float)
    n = np.complex128(n_medium)
    n_re = float(np.real(n))
    s = np.abs(kx)
    propagating = s < n_re - tol
    degenerate = np.abs(s - n_re) <= tol

    if np.imag(n) == 0.0:
        disc = n_re * n_re - kx * kx
        beta = np.where(
            propagating,
            np.sqrt(np.maximum(disc, 0.0)) + 0.0j,
            1j * np.sqrt(np.maximum(-disc, tol)),
        ).astype(np.complex128)
    else:
        beta = principal_beta(n, kx)
        beta = np.where(degenerate & (np.abs(beta) < np.sqrt(tol)), 1j * np.sqrt(tol), beta)

    return OrderSet(
        orders=np.asarray(orders, dtype=int),
        kx=kx,
        beta=beta.astype(np.complex128),
        propagating=propagating,
        degenerate=degenerate,
        n_medium=n,
    )
