#"""
#Domain models.
#
#Pydantic v2 models define validated, immutable configuration; per-query
#results are frozen dataclasses carrying numpy arrays.
#"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

# --- Basic enums/types ---
Pol = Literal["TE", "TM"]
Status = Literal["Success", "PartialFailure", "Failure"]
OrderStatus = Literal["propagating", "evanescent"]

SUCCESS: Status = "Success"
PARTIAL_FAILURE: Status = "PartialFailure"
FAILURE: Status = "Failure"


class MathOptions(BaseModel):
    """Numerical controls for one evaluation.

    N is the truncation index: harmonics -N..N are retained (M = 2N+1).
    """

    model_config = ConfigDict(frozen=True)

    N: int = Field(15, ge=1)
    polarization: Pol = "TE"
    n_slices: int = Field(20, ge=1, description="Staircase lamellae for non-rectangular grooves")
    rayleigh_tol: float = Field(1e-9, gt=0.0, description="Propagating/evanescent boundary band")
    conservation_tol: float = Field(1e-6, gt=0.0)
    cond_limit: float = Field(1e12, gt=1.0, description="Max condition number of modal vectors")

    @property
    def M(self) -> int:
        return 2 * self.N + 1

    def orders(self) -> np.ndarray:
        return np.arange(-self.N, self.N + 1, dtype=int)


class SolverDiagnostics(BaseModel):
    conservation_sum: float
    residual: float
    lossless: bool
    degenerate_orders: list[int] = []
    notes: str = ""


@dataclass(frozen=True)
class DiffractionOrder:
    index: int
    beta: complex  # normalized kz / k0 in the exit medium
    status: OrderStatus
    degenerate: bool = False

    @property
    def propagating(self) -> bool:
        return self.status == "propagating"


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of one (profile, angle, wavelength) query.

    `efficiency` holds reflected efficiencies for orders -N..N in that order;
    `transmitted` holds the substrate-side counterpart (zeros for opaque or
    evanescent channels).
    """

    status: Status
    orders: np.ndarray
    efficiency: np.ndarray
    transmitted: np.ndarray
    reflected_orders: tuple[DiffractionOrder, ...] = ()
    diagnostics: SolverDiagnostics | None = None
    error: str = ""
    debug: dict[str, Any] | None = field(default=None, compare=False)

    @classmethod
    def failure(cls, orders: np.ndarray, message: str) -> EvaluationResult:
        nan = np.full(orders.shape, np.nan, dtype=float)
        return cls(
            status=FAILURE,
            orders=orders,
            efficiency=nan,
            transmitted=nan.copy(),
            error=message,
        )

    @property
    def ok(self) -> bool:
        return self.status != FAILURE

    def efficiencies(self) -> dict[int, float]:
        """Ordered mapping order index -> reflected efficiency (-N..N)."""
        return {int(m): float(e) for m, e in zip(self.orders, self.efficiency)}
