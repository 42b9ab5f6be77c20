# """
# Ports (interfaces) for adapters. The solver core depends ONLY on these.
# """
from __future__ import annotations

from abc import ABC, abstractmethod


class MaterialOptics(ABC):
    @abstractmethod
    def list_materials(self) -> list[str]:
        """Return available material identifiers."""

    @abstractmethod
    def lookup(self, name: str, wavelength_um: float) -> complex:
        """Return the complex refractive index n + ik of `name` at `wavelength_um`.

        Raises MaterialLookupError when the material (or wavelength) is unknown.
        """
