from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np

from grating_app.adapters.solver_rcwa.coupling import check_conservation, extract_efficiencies
from grating_app.adapters.solver_rcwa.grating1d import classify_orders, kx_orders
from grating_app.adapters.solver_rcwa.layer_modal import match_boundaries
from grating_app.adapters.solver_rcwa.rigorous1d import homogeneous_modes, layer_modes
from grating_app.domain.errors import (
    ConservationViolation,
    ConvergenceError,
    GeometryError,
    MaterialLookupError,
)
from grating_app.domain.models import (
    PARTIAL_FAILURE,
    SUCCESS,
    DiffractionOrder,
    EvaluationResult,
    MathOptions,
    SolverDiagnostics,
)
from grating_app.domain.ports import MaterialOptics
from grating_app.domain.profiles import GratingProfile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GratingSolver:
    """
    Rigorous 1D Fourier-modal (RCWA) efficiency solver for one query.

    evaluate() runs profile harmonics -> modal eigenproblem per lamella ->
    S-matrix boundary matching -> efficiency extraction. The solver holds only
    immutable references, so one instance may serve concurrent callers.

    Status mapping: GeometryError, ConvergenceError and MaterialLookupError give
    Failure; ConservationViolation gives PartialFailure (efficiencies kept).
    """

    optics: MaterialOptics
    n_ambient: float = 1.0

    def evaluate(
        self,
        profile: GratingProfile,
        angle_deg: float,
        wavelength_um: float,
        options: MathOptions,
        debug: bool = False,
    ) -> EvaluationResult:
        orders = options.orders()
        try:
            return self._evaluate(profile, float(angle_deg), float(wavelength_um), options, debug)
        except (GeometryError, ConvergenceError, MaterialLookupError) as e:
            logger.info(
                "evaluation failed at theta=%g deg, lambda=%g um: %s", angle_deg, wavelength_um, e
            )
            return EvaluationResult.failure(orders, f"{type(e).__name__}: {e}")

    def _evaluate(
        self,
        profile: GratingProfile,
        angle_deg: float,
        wavelength_um: float,
        options: MathOptions,
        debug: bool,
    ) -> EvaluationResult:
        orders = options.orders()
        N, pol, tol = options.N, options.polarization, options.rayleigh_tol
        if not (wavelength_um > 0.0 and np.isfinite(wavelength_um)):
            return EvaluationResult.failure(orders, f"wavelength must be > 0 (got {wavelength_um})")
        if not np.isfinite(angle_deg):
            return EvaluationResult.failure(orders, "incidence angle is undefined for this step")

        k0 = 2.0 * np.pi / wavelength_um
        n_amb = np.complex128(self.n_ambient)
        n_mat = np.complex128(self.optics.lookup(profile.material, wavelength_um))

        kx = kx_orders(wavelength_um, angle_deg, profile.period_um, orders, float(self.n_ambient))
        ambient = classify_orders(orders, kx, n_amb, tol)
        substrate = classify_orders(orders, kx, n_mat, tol)
        i0 = N  # position of order 0
        if not ambient.propagating[i0]:
            return EvaluationResult.failure(
                orders, f"incident wave does not propagate at theta={angle_deg:g} deg"
            )

        layers = profile.layer_coefficients(
            N, wavelength_um, self.optics, n_slices=options.n_slices, n_ambient=n_amb
        )
        stack = [
            (
                layer_modes(
                    L.eps,
                    L.inv_eps,
                    kx,
                    pol,
                    cond_limit=options.cond_limit,
                    uniform=L.uniform,
                ),
                L.thickness_um,
            )
            for L in layers
        ]
        incident = np.zeros(orders.size, dtype=np.complex128)
        incident[i0] = 1.0
        matched = match_boundaries(
            homogeneous_modes(ambient.beta, n_amb**2, pol),
            stack,
            homogeneous_modes(substrate.beta, n_mat**2, pol),
            k0,
            incident,
        )

        eff = extract_efficiencies(matched.r, matched.t, ambient, substrate, pol, i0)
        status = SUCCESS
        error = ""
        try:
            check_conservation(eff, options.conservation_tol)
        except ConservationViolation as e:
            logger.warning("theta=%g deg, lambda=%g um: %s", angle_deg, wavelength_um, e)
            status = PARTIAL_FAILURE
            error = str(e)

        degenerate = sorted(set(ambient.degenerate_orders()) | set(substrate.degenerate_orders()))
        diagnostics = SolverDiagnostics(
            conservation_sum=eff.total,
            residual=eff.residual,
            lossless=eff.lossless,
            degenerate_orders=degenerate,
            notes=f"fmm-1d({pol}, N={N}, layers={len(layers)})",
        )
        reflected_orders = tuple(
            DiffractionOrder(
                index=int(m),
                beta=complex(b),
                status="propagating" if p else "evanescent",
                degenerate=bool(d),
            )
            for m, b, p, d in zip(orders, ambient.beta, ambient.propagating, ambient.degenerate)
        )

        trace: dict[str, Any] | None = None
        if debug:
            trace = {
                "kx": kx.copy(),
                "beta_ambient": ambient.beta.copy(),
                "beta_substrate": substrate.beta.copy(),
                "fourier_coefficients": [L.eps.copy() for L in layers],
                "eigenvalues": [modes.gamma**2 for modes, _ in stack],
                "reflection_amplitudes": matched.r.copy(),
                "transmission_amplitudes": matched.t.copy(),
            }
            _log_trace(angle_deg, wavelength_um, trace)

        return EvaluationResult(
            status=status,
            orders=orders,
            efficiency=eff.reflected,
            transmitted=eff.transmitted,
            reflected_orders=reflected_orders,
            diagnostics=diagnostics,
            error=error,
            debug=trace,
        )


def _log_trace(angle_deg: float, wavelength_um: float, trace: dict[str, Any]) -> None:
    logger.debug("theta=%g deg, lambda=%g um", angle_deg, wavelength_um)
    for key, value in trace.items():
        if isinstance(value, list):
            for i, v in enumerate(value):
                logger.debug("  %s[%d] = %s", key, i, np.array2string(v, precision=6))
        else:
            logger.debug("  %s = %s", key, np.array2string(value, precision=6))


def evaluate(
    profile: GratingProfile,
    angle_deg: float,
    wavelength_um: float,
    options: MathOptions,
    debug: bool = False,
    *,
    optics: MaterialOptics,
    n_ambient: float = 1.0,
) -> EvaluationResult:
    """Functional form of GratingSolver(optics, n_ambient).evaluate(...)."""
    return GratingSolver(optics=optics, n_ambient=n_ambient).evaluate(
        profile, angle_deg, wavelength_um, options, debug
    )
