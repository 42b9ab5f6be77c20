# """
# Error taxonomy shared by the solver, the sweep driver and the CLI.
#
# None of these derive from ValueError: pydantic v2 only wraps ValueError and
# AssertionError raised inside validators, so GeometryError raised while a
# profile model is validated reaches the caller unchanged.
# """
from __future__ import annotations


class GratingError(Exception):
    """Base class for every error raised by grating_app."""


class GeometryError(GratingError):
    """Invalid profile parameters, detected when the profile is constructed."""


class ConvergenceError(GratingError):
    """The modal eigenproblem (or the boundary solve) has no usable spectrum."""


class ConservationViolation(GratingError):
    """Energy balance outside tolerance; signals numerical instability."""

    def __init__(self, message: str, *, total: float, residual: float) -> None:
        super().__init__(message)
        self.total = float(total)
        self.residual = float(residual)


class MaterialLookupError(GratingError):
    """No refractive index available for a material at a wavelength."""

    def __init__(self, name: str, wavelength_um: float | None = None) -> None:
        where = "" if wavelength_um is None else f" at {wavelength_um:g} um"
        super().__init__(f"no refractive index for material {name!r}{where}")
        self.name = name
        self.wavelength_um = wavelength_um


MaterialNotFound = MaterialLookupError
