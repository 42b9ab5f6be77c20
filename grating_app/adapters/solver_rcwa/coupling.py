from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np

from grating_app.domain.errors import ConservationViolation

from .grating1d import OrderSet

Pol = Literal["TE", "TM"]


def admittance_te(beta: np.ndarray) -> np.ndarray:
    """
    TE (s-polarization) wave admittance q = kz / (mu0 omega); in normalized units
    it is proportional to beta = kz/k0 (common constants cancel in power ratios).
    """
    return np.asarray(beta, dtype=np.complex128)


def admittance_tm(beta: np.ndarray, eps: complex) -> np.ndarray:
    """
    TM (p-polarization) normalized admittance q ~ beta / eps, eps = n^2 (complex allowed).
    """
    return np.asarray(beta, dtype=np.complex128) / np.complex128(eps)


def admittance(beta: np.ndarray, eps: complex, pol: Pol) -> np.ndarray:
    return admittance_te(beta) if pol == "TE" else admittance_tm(beta, eps)


def power_from_amplitudes(a: np.ndarray, q_mode: np.ndarray, q_incident: complex) -> np.ndarray:
    """
    Convert complex order amplitudes 'a' into *power fractions* using
    the admittance ratio Re(q_mode)/Re(q_incident). Clip small negatives.

        P_m = |a_m|^2 * Re(q_m) / Re(q_incident)
    """
    a = np.asarray(a, dtype=np.complex128)
    rq = np.real(np.asarray(q_mode, dtype=np.complex128))
    rq0 = float(np.real(q_incident))
    if rq0 <= 0.0:
        raise ValueError("incident order must be propagating (Re(q_incident) > 0)")
    P = (np.abs(a) ** 2) * (rq / rq0)
    return np.clip(P, 0.0, np.inf)


@dataclass(frozen=True)
class Efficiencies:
    reflected: np.ndarray  # (M,) per order, 0 for evanescent
    transmitted: np.ndarray  # (M,) per order, 0 for evanescent / opaque substrate
    total: float
    lossless: bool

    @property
    def residual(self) -> float:
        return abs(self.total - 1.0)


def extract_efficiencies(
    r: np.ndarray,
    t: np.ndarray,
    ambient: OrderSet,
    substrate: OrderSet,
    pol: Pol,
    incident_index: int,
) -> Efficiencies:
    """
    eta_n = |r_n|^2 Re(q_n)/Re(q_0) for propagating orders, exactly 0 otherwise.
    The transmitted side uses the substrate admittance; the sum of both is the
    conservation total (1 for a lossless grating, below 1 with absorption).
    """
    eps_a = np.complex128(ambient.n_medium) ** 2
    eps_s = np.complex128(substrate.n_medium) ** 2
    q_amb = admittance(ambient.beta, eps_a, pol)
    q_sub = admittance(substrate.beta, eps_s, pol)
    q0 = q_amb[incident_index]

    R = np.where(ambient.propagating, power_from_amplitudes(r, q_amb, q0), 0.0)
    T = np.where(substrate.propagating, power_from_amplitudes(t, q_sub, q0), 0.0)
    lossless = ambient.lossless and substrate.lossless
    return Efficiencies(
        reflected=R.astype(float),
        transmitted=T.astype(float),
        total=float(R.sum() + T.sum()),
        lossless=lossless,
    )


def check_conservation(eff: Efficiencies, tol: float) -> None:
    """
    Energy self-check. Lossless: |sum - 1| <= tol. Absorbing: sum <= 1 + tol
    (a sum above one signals instability, never physics).
    """
    if eff.lossless:
        if eff.residual > tol:
            raise ConservationViolation(
                f"lossless grating: efficiency sum {eff.total:.12g} deviates from 1 "
                f"by {eff.residual:.3g} (tol {tol:.1e})",
                total=eff.total,
                residual=eff.residual,
            )
    elif eff.total > 1.0 + tol:
        raise ConservationViolation(
            f"absorbing grating: efficiency sum {eff.total:.12g} exceeds 1 (tol {tol:.1e})",
            total=eff.total,
            residual=eff.total - 1.0,
        )
