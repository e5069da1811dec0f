"""
Particle module for source-area simulation.

Defines the physical parameter bundle of one particle class and its
gravitational settling velocity.
"""

import numpy as np
from dataclasses import dataclass, fields, replace
from typing import Mapping


# Short option names used in configuration files
OPTION_NAMES = {
    "h": "plume_height",
    "d": "diameter",
    "Cy": "cy",
    "Cz": "cz",
    "n": "n",
    "Qo": "source_strength",
    "pp": "particle_density",
    "pf": "fluid_density",
    "v": "viscosity",
    "g": "gravity",
}


@dataclass(frozen=True)
class PhysicalParameters:
    """Constants describing the plume and one particle class."""

    plume_height: float = 10.0        # m
    diameter: float = 250.0           # micrometres
    cy: float = 0.21                  # crosswind diffusion constant
    cz: float = 0.12                  # vertical diffusion constant
    n: float = 0.25                   # turbulence exponent
    source_strength: float = 100000.0
    particle_density: float = 0.5     # g/cm^3
    fluid_density: float = 0.00127    # g/cm^3
    viscosity: float = 0.142          # cm^2/s, kinematic
    gravity: float = 981.0            # cm/s^2

    def __post_init__(self):
        if not 0 < self.n < 2:
            raise ValueError(f"turbulence exponent n must be in (0, 2), got {self.n}")
        for name in ("cy", "cz", "viscosity", "diameter"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.particle_density <= self.fluid_density:
            raise ValueError("particle density must exceed fluid density")

    @property
    def m(self) -> float:
        """Derived turbulence exponent m = n / (4 - 2n)."""
        return self.n / (4 - 2 * self.n)

    @property
    def settling_velocity(self) -> float:
        """Settling velocity of this particle class in cm/s."""
        return settling_velocity(self)

    def with_diameter(self, diameter: float) -> "PhysicalParameters":
        """Copy of these parameters for another particle size class."""
        return replace(self, diameter=diameter)

    @classmethod
    def from_dict(cls, config: Mapping) -> "PhysicalParameters":
        """
        Build parameters from a configuration mapping.

        Args:
            config: Mapping keyed by short option names (``h``, ``d``, ``Cy``...)
                or by field names; missing keys keep their defaults

        Returns:
            PhysicalParameters instance
        """
        field_names = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in config.items():
            name = OPTION_NAMES.get(key, key)
            if name not in field_names:
                raise ValueError(f"unknown physical parameter: {key}")
            kwargs[name] = float(value)
        return cls(**kwargs)

    def to_dict(self) -> dict:
        """Short-name mapping accepted by ``from_dict``."""
        return {short: getattr(self, name) for short, name in OPTION_NAMES.items()}


def settling_velocity(params: PhysicalParameters) -> float:
    """
    Calculate gravitational settling velocity using Stokes' law.

    Args:
        params: Physical parameters; diameter in micrometres, densities in
            g/cm^3, viscosity in cm^2/s and gravity in cm/s^2

    Returns:
        Settling velocity in cm/s
    """
    diameter_cm = params.diameter * 1e-4
    return float(
        (params.particle_density - params.fluid_density)
        * params.gravity
        * np.square(diameter_cm)
        / (18 * params.viscosity)
    )
