from __future__ import annotations

from typing import Callable, Dict, Mapping, Union

from grating_app.domain.errors import MaterialLookupError
from grating_app.domain.ports import MaterialOptics

# An entry is either a constant complex index or a callable of wavelength (um).
IndexEntry = Union[complex, Callable[[float], complex]]


class MaterialTable(MaterialOptics):
    """In-memory refractive-index table.

    Stands in for the (external) index database: each material maps to a
    constant n + ik or to a callable n(lambda_um). Unknown names raise
    MaterialLookupError instead of silently defaulting.
    """

    def __init__(self, entries: Mapping[str, IndexEntry] | None = None) -> None:
        self._entries: Dict[str, IndexEntry] = dict(entries or {})

    def list_materials(self) -> list[str]:
        return sorted(self._entries)

    def lookup(self, name: str, wavelength_um: float) -> complex:
        try:
            entry = self._entries[name]
        except KeyError:
            raise MaterialLookupError(name, wavelength_um) from None
        if not wavelength_um > 0.0:
            raise MaterialLookupError(name, wavelength_um)
        value = entry(float(wavelength_um)) if callable(entry) else entry
        return complex(value)

    def with_entry(self, name: str, entry: IndexEntry) -> MaterialTable:
        """Return a copy with `name` added or replaced."""
        merged = dict(self._entries)
        merged[name] = entry
        return MaterialTable(merged)


def default_table() -> MaterialTable:
    # Constant placeholder indices (soft x-ray magnitudes for the metals); not a database.
    return MaterialTable(
        {
            "Vacuum": 1.0 + 0.0j,
            "Au": 0.95 + 0.03j,
            "Ni": 0.97 + 0.02j,
            "C": 0.99 + 0.005j,
            "SiO2": 1.45 + 0.0j,
        }
    )
