from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np

from grating_app.domain.errors import ConvergenceError

Pol = Literal["TE", "TM"]


# ----------------------------- Toeplitz convolution ------------------------------------


def toeplitz_from_harmonics(h: np.ndarray) -> np.ndarray:
    """
    Convolution matrix from the full harmonic vector h = [h_{-2N}, ..., h_{2N}].
    Returns C with shape (2N+1, 2N+1) and C[m, n] = h_{m-n}, so that
    (C @ f)_m = sum_n h_{m-n} f_n.
    """
    h = np.asarray(h)
    if h.ndim != 1 or h.size % 4 != 1:
        raise ValueError("h must be a 1D array of 4N+1 harmonics (-2N..2N)")
    M = (h.size + 1) // 2
    idx = np.arange(M)
    # h is stored from -2N upward; offset 2N = M - 1 maps index 0 -> h_{-2N}
    return h[(idx[:, None] - idx[None, :]) + (M - 1)].astype(np.complex128)


# ----------------------------- Modal operators -----------------------------------------


def operator_te(eps_h: np.ndarray, kx: np.ndarray) -> np.ndarray:
    r"""
    TE (E along the grooves): d^2 S/dz'^2 = -(E - Kx^2) S, z' = k0 z.
    Returns Omega = E - Kx^2 whose eigenvalues are gamma^2.
    """
    E = toeplitz_from_harmonics(eps_h)
    kx = np.asarray(kx, dtype=np.complex128)
    if kx.size != E.shape[0]:
        raise ValueError(f"len(kx)={kx.size} does not match {E.shape[0]} harmonics")
    return E - np.diag(kx * kx)


def operator_tm(
    eps_h: np.ndarray, inv_eps_h: np.ndarray, kx: np.ndarray
) -> tuple[np.ndarray, np.ndarray]:
    r"""
    TM (H along the grooves) with Li's inverse rule:
        Omega = A^{-1} (I - Kx E^{-1} Kx),  A = [[1/eps]],  E = [[eps]].
    Ez uses E^{-1} (Laurent rule on D_z = eps E_z); the z-derivative term uses
    A^{-1} because eps and d_z H_y jump together at the vertical walls.
    Returns (Omega, A); A is needed for the tangential E-field matrix V = A W Gamma.
    """
    E = toeplitz_from_harmonics(eps_h)
    A = toeplitz_from_harmonics(inv_eps_h)
    kx = np.asarray(kx, dtype=np.complex128)
    if kx.size != E.shape[0]:
        raise ValueError(f"len(kx)={kx.size} does not match {E.shape[0]} harmonics")
    Kx = np.diag(kx)
    I_mat = np.eye(kx.size, dtype=np.complex128)
    try:
        inner = I_mat - Kx @ np.linalg.solve(E, Kx)
        omega = np.linalg.solve(A, inner)
    except np.linalg.LinAlgError as e:
        raise ConvergenceError(f"singular permittivity convolution matrix: {e}") from e
    return omega, A


# ----------------------------- Eigen-decomposition -------------------------------------


def solve_modes(omega: np.ndarray, *, cond_limit: float = 1e12) -> tuple[np.ndarray, np.ndarray]:
    """
    General (non-Hermitian) complex eigendecomposition Omega W = W Gamma^2.

    Pure function of the matrix. Returns (gamma, W) with gamma = sqrt(eigenvalue)
    on the branch Im(gamma) >= 0 (Re(gamma) >= 0 for real gamma), i.e. modes
    exp(+i gamma z') travel or decay downward.

    Raises ConvergenceError when the decomposition fails, yields non-finite
    values, or the eigenvector matrix is too ill-conditioned to invert.
    """
    omega = np.asarray(omega, dtype=np.complex128)
    if omega.ndim != 2 or omega.shape[0] != omega.shape[1]:
        raise ValueError("omega must be a square matrix")
    if not np.all(np.isfinite(omega)):
        raise ConvergenceError("modal operator contains non-finite entries")
    try:
        lam, W = np.linalg.eig(omega)
    except np.linalg.LinAlgError as e:
        raise ConvergenceError(f"eigendecomposition did not converge: {e}") from e
    if not (np.all(np.isfinite(lam)) and np.all(np.isfinite(W))):
        raise ConvergenceError("eigendecomposition returned non-finite values")
    cond = float(np.linalg.cond(W))
    if not np.isfinite(cond) or cond > cond_limit:
        raise ConvergenceError(
            f"modal basis is ill-conditioned (cond={cond:.3g} > {cond_limit:.3g}); "
            "reduce the truncation index or the index contrast"
        )
    gamma = np.sqrt(lam.astype(np.complex128))
    flip = np.angle(gamma) < -1e-12
    gamma[flip] = -gamma[flip]
    return gamma, W


# ----------------------------- Layer modes ---------------------------------------------


@dataclass(frozen=True)
class LayerModes:
    """
    Modal description of one region, referenced so that at any interface
      tangential F1 = W (c+ + c-),  tangential F2 = V (c+ - c-)
    with F1 = E_y, F2 ~ H_x for TE and F1 = H_y, F2 ~ E_x for TM.
    """

    gamma: np.ndarray  # (M,) normalized kz of modes
    W: np.ndarray  # (M, M)
    V: np.ndarray  # (M, M)


def homogeneous_modes(beta: np.ndarray, eps: complex, pol: Pol) -> LayerModes:
    """Half-space or uniform layer: plane waves, W = I, V = diag(beta) (TE) or diag(beta/eps) (TM)."""
    beta = np.asarray(beta, dtype=np.complex128)
    W = np.eye(beta.size, dtype=np.complex128)
    y = beta if pol == "TE" else beta / np.complex128(eps)
    return LayerModes(gamma=beta, W=W, V=np.diag(y))


def modal_uniform(eps0: complex, kx: np.ndarray) -> np.ndarray:
    """Uniform-layer propagation constants gamma = sqrt(eps0 - kx^2), Im >= 0."""
    g = np.sqrt(np.complex128(eps0) - np.asarray(kx, dtype=np.complex128) ** 2)
    flip = np.angle(g) < -1e-12
    g[flip] = -g[flip]
    return g


def layer_modes(
    eps_h: np.ndarray,
    inv_eps_h: np.ndarray,
    kx: np.ndarray,
    pol: Pol,
    *,
    cond_limit: float = 1e12,
    uniform: bool = False,
) -> LayerModes:
    """Build and solve the Floquet-Bloch eigenproblem of one lamella."""
    if uniform:
        eps0 = np.complex128(eps_h[(len(eps_h) - 1) // 2])
        return homogeneous_modes(modal_uniform(eps0, kx), eps0, pol)

    if pol == "TE":
        omega = operator_te(eps_h, kx)
        gamma, W = solve_modes(omega, cond_limit=cond_limit)
        V = W * gamma[None, :]
    else:
        omega, A = operator_tm(eps_h, inv_eps_h, kx)
        gamma, W = solve_modes(omega, cond_limit=cond_limit)
        V = A @ (W * gamma[None, :])
    return LayerModes(gamma=gamma, W=W, V=V)
