from __future__ import annotations

import pytest

from grating_app.adapters.materials.builtin import MaterialTable, default_table
from grating_app.adapters.solver_rcwa.engine_rigorous1d import GratingSolver
from grating_app.domain.models import MathOptions
from grating_app.domain.profiles import BlazedProfile, RectangularProfile


@pytest.fixture(scope="session")
def optics() -> MaterialTable:
    """Placeholder table plus a lossless glass and a real-index mirror (n < 1)."""
    return default_table().with_entry("Glass", 1.45 + 0.0j).with_entry("Mirror", 0.99 + 0.0j)


@pytest.fixture(scope="session")
def solver(optics: MaterialTable) -> GratingSolver:
    return GratingSolver(optics=optics)


@pytest.fixture(scope="session")
def glass_lamellar() -> RectangularProfile:
    """Lossless dielectric lamellar grating, duty 0.5."""
    return RectangularProfile(period_um=1.0, material="Glass", depth_um=0.3, valley_width_um=0.5)


@pytest.fixture(scope="session")
def au_blazed() -> BlazedProfile:
    """Soft x-ray blazed grating: 1.6 um period, 3.2/30 deg facets, gold."""
    return BlazedProfile(
        period_um=1.6, material="Au", blaze_angle_deg=3.2, anti_blaze_angle_deg=30.0
    )


@pytest.fixture(scope="session")
def options_te() -> MathOptions:
    return MathOptions(N=5, polarization="TE")
