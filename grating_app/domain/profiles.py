#"""
#Grating profiles.
#
#Each profile is a frozen pydantic model describing one period of a surface
#relief h(x), 0 <= h <= depth, with the grating material below the surface and
#the ambient above it. The solver sees a profile only through its permittivity
#harmonics: a horizontal cut at relative height `level` (0 = groove bottom,
#1 = crest) is a binary pattern whose fill indicator has harmonics c_k, and
#
#    eps_k = eps_ambient * delta_k0 + (eps_material - eps_ambient) * c_k.
#
#Geometry is checked once, at construction; violations raise GeometryError.
#"""
from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Annotated, Literal, Sequence, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

from grating_app.domain.errors import GeometryError
from grating_app.domain.ports import MaterialOptics

ProfileKind = Literal["rectangular", "blazed", "sinusoidal", "trapezoidal"]

# Midpoint samples per period for profiles integrated numerically.
QUADRATURE_POINTS = 8192


# ----------------------------- Fill-indicator harmonics --------------------------------


def harmonic_indices(n: int) -> np.ndarray:
    return np.arange(-n, n + 1, dtype=int)


def interval_harmonics(a: float, b: float, n: int) -> np.ndarray:
    """Harmonics k=-n..n of the indicator of [a, b] (fractions of the period).

    c_k = (b - a) * exp(-i pi k (a + b)) * sinc(k (b - a)),  sinc(x) = sin(pi x)/(pi x)
    """
    k = harmonic_indices(n).astype(float)
    width = float(b) - float(a)
    return (width * np.exp(-1j * np.pi * k * (a + b)) * np.sinc(k * width)).astype(np.complex128)


def polyline_harmonics(vertices: np.ndarray, level: float, n: int) -> np.ndarray:
    """Harmonics of {x : h(x) > level} for a piecewise-linear h(x).

    `vertices` is a (P, 2) array of (x, h) with x running 0 -> 1 (fractions of
    the period) and h in units of the groove depth. The integral is accumulated
    segment by segment; vertical walls (x1 == x0) contribute nothing.
    """
    c = np.zeros(2 * n + 1, dtype=np.complex128)
    for (x0, h0), (x1, h1) in zip(vertices[:-1], vertices[1:]):
        if x1 <= x0 or level >= max(h0, h1):
            continue
        if level <= min(h0, h1):
            a, b = x0, x1
        else:
            xc = x0 + (level - h0) * (x1 - x0) / (h1 - h0)
            a, b = (xc, x1) if h1 > h0 else (x0, xc)
        if b > a:
            c += interval_harmonics(a, b, n)
    return c


def quadrature_harmonics(indicator: np.ndarray, n: int) -> np.ndarray:
    """Midpoint-rule harmonics of samples taken at x_j = (j + 1/2) / K.

    c_k = (1/K) sum_j f_j exp(-2 pi i k x_j) = exp(-i pi k / K) * FFT(f)[k mod K] / K
    """
    K = int(indicator.size)
    if K <= 2 * n:
        raise ValueError(f"need more than {2 * n} samples for harmonics up to |k|={n}")
    spectrum = np.fft.fft(np.asarray(indicator, dtype=float)) / K
    k = harmonic_indices(n)
    return (spectrum[k % K] * np.exp(-1j * np.pi * k / K)).astype(np.complex128)


def permittivity_harmonics(
    fill: np.ndarray, *, eps_material: complex, eps_ambient: complex, inverse: bool = False
) -> np.ndarray:
    """Mix fill harmonics into eps (or 1/eps, for the inverse rule) harmonics."""
    hi = 1.0 / np.complex128(eps_material) if inverse else np.complex128(eps_material)
    lo = 1.0 / np.complex128(eps_ambient) if inverse else np.complex128(eps_ambient)
    out = (hi - lo) * np.asarray(fill, dtype=np.complex128)
    out[(out.size - 1) // 2] += lo
    return out


@dataclass(frozen=True)
class GrooveLayer:
    """One horizontal lamella of the grooved region, top to bottom order."""

    thickness_um: float
    level: float
    eps: np.ndarray  # (4N+1,) harmonics -2N..2N
    inv_eps: np.ndarray  # (4N+1,) harmonics of 1/eps

    @property
    def uniform(self) -> bool:
        c = (self.eps.size - 1) // 2
        side = np.delete(self.eps, c)
        return bool(np.all(np.abs(side) <= 1e-14 * max(1.0, abs(self.eps[c]))))


# ----------------------------- Profile models ------------------------------------------


class _ProfileBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    period_um: float
    material: str

    def _check_period(self) -> None:
        if not (self.period_um > 0.0 and np.isfinite(self.period_um)):
            raise GeometryError(f"grating period must be > 0 (got {self.period_um})")

    @abstractmethod
    def fill_harmonics(self, level: float, n: int) -> np.ndarray:
        """Harmonics k=-n..n of the material indicator at relative height `level`."""

    @abstractmethod
    def geometry(self) -> tuple[float, ...]:
        """Geometry parameters in command-line order (um / degrees)."""

    @property
    def modulation_depth_um(self) -> float:
        return float(getattr(self, "depth_um"))

    def n_layers(self, n_slices: int) -> int:
        return 0 if self.modulation_depth_um <= 0.0 else int(n_slices)

    def slice_levels(self, n_slices: int) -> tuple[np.ndarray, np.ndarray]:
        """Thicknesses (um) and mid-height levels of the lamellae, crest first."""
        S = self.n_layers(n_slices)
        if S == 0:
            return np.zeros(0, dtype=float), np.zeros(0, dtype=float)
        s = np.arange(S, dtype=float)
        thickness = np.full(S, self.modulation_depth_um / S, dtype=float)
        return thickness, 1.0 - (s + 0.5) / S

    def fourier_coefficients(
        self,
        N: int,
        wavelength_um: float,
        optics: MaterialOptics,
        *,
        level: float = 0.5,
        inverse: bool = False,
        n_ambient: complex = 1.0,
    ) -> np.ndarray:
        """Permittivity harmonics eps_k, k = -2N..2N (4N+1 values), at `level`.

        For a real permittivity eps_{-k} = conj(eps_k). With inverse=True the
        harmonics of 1/eps are returned instead.
        """
        n_mat = optics.lookup(self.material, float(wavelength_um))
        return permittivity_harmonics(
            self.fill_harmonics(float(level), 2 * int(N)),
            eps_material=np.complex128(n_mat) ** 2,
            eps_ambient=np.complex128(n_ambient) ** 2,
            inverse=inverse,
        )

    def layer_coefficients(
        self,
        N: int,
        wavelength_um: float,
        optics: MaterialOptics,
        *,
        n_slices: int,
        n_ambient: complex = 1.0,
    ) -> list[GrooveLayer]:
        """Resolve the grooved region into lamellae with their eps and 1/eps harmonics."""
        n_mat = np.complex128(optics.lookup(self.material, float(wavelength_um)))
        eps_m = n_mat**2
        eps_a = np.complex128(n_ambient) ** 2
        thickness, levels = self.slice_levels(n_slices)
        layers: list[GrooveLayer] = []
        for d, lv in zip(thickness, levels):
            fill = self.fill_harmonics(float(lv), 2 * int(N))
            layers.append(
                GrooveLayer(
                    thickness_um=float(d),
                    level=float(lv),
                    eps=permittivity_harmonics(fill, eps_material=eps_m, eps_ambient=eps_a),
                    inv_eps=permittivity_harmonics(
                        fill, eps_material=eps_m, eps_ambient=eps_a, inverse=True
                    ),
                )
            )
        return layers


class RectangularProfile(_ProfileBase):
    """Lamellar profile: a valley of width w at height 0, a land at `depth_um`."""

    kind: Literal["rectangular"] = "rectangular"
    depth_um: float
    valley_width_um: float

    @model_validator(mode="after")
    def _check_geometry(self) -> RectangularProfile:
        self._check_period()
        if not self.depth_um >= 0.0:
            raise GeometryError(f"depth must be >= 0 (got {self.depth_um})")
        if not 0.0 < self.fill_factor < 1.0:
            raise GeometryError(
                f"duty cycle valley/period must lie in (0, 1) (got {self.fill_factor:g})"
            )
        return self

    @property
    def fill_factor(self) -> float:
        return float(self.valley_width_um) / float(self.period_um)

    def n_layers(self, n_slices: int) -> int:
        # The lamellar profile is exact with a single layer.
        return 0 if self.depth_um <= 0.0 else 1

    def fill_harmonics(self, level: float, n: int) -> np.ndarray:
        return interval_harmonics(self.fill_factor, 1.0, n)

    def geometry(self) -> tuple[float, ...]:
        return (self.depth_um, self.valley_width_um)


class BlazedProfile(_ProfileBase):
    """Triangular sawtooth: blaze facet rising at alpha, anti-blaze facet falling at beta."""

    kind: Literal["blazed"] = "blazed"
    blaze_angle_deg: float
    anti_blaze_angle_deg: float

    @model_validator(mode="after")
    def _check_geometry(self) -> BlazedProfile:
        self._check_period()
        for name, a in (("blaze", self.blaze_angle_deg), ("anti-blaze", self.anti_blaze_angle_deg)):
            if not 0.0 <= a < 90.0:
                raise GeometryError(f"{name} angle must lie in [0, 90) degrees (got {a})")
        return self

    def _tans(self) -> tuple[float, float]:
        return (
            float(np.tan(np.deg2rad(self.blaze_angle_deg))),
            float(np.tan(np.deg2rad(self.anti_blaze_angle_deg))),
        )

    @property
    def depth_um(self) -> float:
        ta, tb = self._tans()
        if ta == 0.0 or tb == 0.0:
            return 0.0
        return float(self.period_um) * ta * tb / (ta + tb)

    def vertices(self) -> np.ndarray:
        ta, tb = self._tans()
        apex = tb / (ta + tb) if ta + tb > 0.0 else 0.5
        return np.array([[0.0, 0.0], [apex, 1.0], [1.0, 0.0]], dtype=float)

    def fill_harmonics(self, level: float, n: int) -> np.ndarray:
        return polyline_harmonics(self.vertices(), level, n)

    def geometry(self) -> tuple[float, ...]:
        return (self.blaze_angle_deg, self.anti_blaze_angle_deg)


class SinusoidalProfile(_ProfileBase):
    """h(x) = depth/2 * (1 + cos(2 pi x / period))."""

    kind: Literal["sinusoidal"] = "sinusoidal"
    depth_um: float

    @model_validator(mode="after")
    def _check_geometry(self) -> SinusoidalProfile:
        self._check_period()
        if not self.depth_um >= 0.0:
            raise GeometryError(f"depth must be >= 0 (got {self.depth_um})")
        return self

    def fill_harmonics(self, level: float, n: int) -> np.ndarray:
        K = max(QUADRATURE_POINTS, 64 * (n + 1))
        x = (np.arange(K, dtype=float) + 0.5) / K
        h = 0.5 * (1.0 + np.cos(2.0 * np.pi * x))
        return quadrature_harmonics((h > level).astype(float), n)

    def geometry(self) -> tuple[float, ...]:
        return (self.depth_um,)


class TrapezoidalProfile(_ProfileBase):
    """Flat valley of width w, sidewalls at the blaze/anti-blaze angles, flat top."""

    kind: Literal["trapezoidal"] = "trapezoidal"
    depth_um: float
    valley_width_um: float
    blaze_angle_deg: float
    anti_blaze_angle_deg: float

    @model_validator(mode="after")
    def _check_geometry(self) -> TrapezoidalProfile:
        self._check_period()
        if not self.depth_um >= 0.0:
            raise GeometryError(f"depth must be >= 0 (got {self.depth_um})")
        duty = self.valley_width_um / self.period_um
        if not 0.0 < duty < 1.0:
            raise GeometryError(f"duty cycle valley/period must lie in (0, 1) (got {duty:g})")
        for name, a in (("blaze", self.blaze_angle_deg), ("anti-blaze", self.anti_blaze_angle_deg)):
            if not 0.0 < a <= 90.0:
                raise GeometryError(f"{name} angle must lie in (0, 90] degrees (got {a})")
        if self.top_width_um < -1e-12 * self.period_um:
            raise GeometryError(
                "sidewalls intersect: valley width plus both ramp runs exceeds the period"
            )
        return self

    def _runs_um(self) -> tuple[float, float]:
        ra = np.deg2rad(self.blaze_angle_deg)
        rb = np.deg2rad(self.anti_blaze_angle_deg)
        return (
            float(self.depth_um * np.cos(ra) / np.sin(ra)),
            float(self.depth_um * np.cos(rb) / np.sin(rb)),
        )

    @property
    def top_width_um(self) -> float:
        run_a, run_b = self._runs_um()
        return float(self.period_um - self.valley_width_um - run_a - run_b)

    def vertices(self) -> np.ndarray:
        P = float(self.period_um)
        run_a, run_b = self._runs_um()
        w = self.valley_width_um / P
        top_start = min(w + run_a / P, 1.0 - run_b / P)
        return np.array(
            [[0.0, 0.0], [w, 0.0], [top_start, 1.0], [1.0 - run_b / P, 1.0], [1.0, 0.0]],
            dtype=float,
        )

    def fill_harmonics(self, level: float, n: int) -> np.ndarray:
        return polyline_harmonics(self.vertices(), level, n)

    def geometry(self) -> tuple[float, ...]:
        return (
            self.depth_um,
            self.valley_width_um,
            self.blaze_angle_deg,
            self.anti_blaze_angle_deg,
        )


GratingProfile = Annotated[
    Union[RectangularProfile, BlazedProfile, SinusoidalProfile, TrapezoidalProfile],
    Field(discriminator="kind"),
]

_GEOMETRY_FIELDS: dict[str, tuple[type[_ProfileBase], tuple[str, ...]]] = {
    "rectangular": (RectangularProfile, ("depth_um", "valley_width_um")),
    "blazed": (BlazedProfile, ("blaze_angle_deg", "anti_blaze_angle_deg")),
    "sinusoidal": (SinusoidalProfile, ("depth_um",)),
    "trapezoidal": (
        TrapezoidalProfile,
        ("depth_um", "valley_width_um", "blaze_angle_deg", "anti_blaze_angle_deg"),
    ),
}


def make_profile(
    kind: str, period_um: float, geometry: Sequence[float], material: str
) -> GratingProfile:
    """Build a profile from the command-line style geometry list.

    rectangular: depth, valley width | blazed: blaze, anti-blaze |
    sinusoidal: depth | trapezoidal: depth, valley width, blaze, anti-blaze
    """
    try:
        cls, names = _GEOMETRY_FIELDS[kind]
    except KeyError:
        raise GeometryError(
            f"unknown grating type {kind!r}; expected one of {', '.join(_GEOMETRY_FIELDS)}"
        ) from None
    if len(geometry) != len(names):
        raise GeometryError(
            f"{kind} geometry needs {len(names)} values ({', '.join(names)}), got {len(geometry)}"
        )
    params = {name: float(v) for name, v in zip(names, geometry)}
    return cls(period_um=float(period_um), material=material, **params)  # type: ignore[return-value]
