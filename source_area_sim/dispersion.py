"""
Dispersion module: deposition probability raster for one sample cell.

Combines the geometry, wind, settling and plume terms into the inverted
Gaussian plume

    D = (2 vg Qx) / (u pi Cy Cz x^(2-n))
        * exp(-y^2 / (Cy^2 x^(2-n)))
        * exp(-(h + dz)^2 / (Cz^2 x^(2-n)))

where x is distance, y crosswind distance and dz the elevation offset.
"""

import numpy as np
from dataclasses import dataclass, field
from typing import List

from .atmosphere import WindModel
from .errors import DegenerateSource, DivergentCells, SourceAreaWarning
from .geometry import GeometryFields, SampleCell
from .grid import Grid, check_coregistered
from .particle import PhysicalParameters
from .plume import plume_mass_field


@dataclass
class DispersionRaster:
    """Normalized deposition probability for one sample cell."""

    cell: SampleCell
    values: np.ndarray
    total_mass: float
    diagnostics: List[SourceAreaWarning] = field(default_factory=list)

    @property
    def degenerate(self) -> bool:
        """True when the sample cell produced no dispersion at all."""
        return self.total_mass == 0


def dispersion_density(x, y, elevation_offset, u, qx, params: PhysicalParameters,
                       vg: float) -> np.ndarray:
    """
    Evaluate the plume deposition density elementwise.

    Cells that come out NaN or infinite (zero distance, still air, overflow,
    plume below ground) are set to 0: a cell coincident with the source or
    without wind carries no measurable plume mass in this discretisation.

    Returns:
        Non-negative array shaped like the inputs
    """
    height = params.plume_height + elevation_offset
    with np.errstate(divide="ignore", invalid="ignore", over="ignore", under="ignore"):
        spread = np.power(x, 2 - params.n)
        density = (
            (2 * vg * qx) / (u * np.pi * params.cy * params.cz * spread)
            * np.exp(-np.square(y) / (params.cy ** 2 * spread))
            * np.exp(-np.square(height) / (params.cz ** 2 * spread))
        )
    return np.where(np.isfinite(density) & (density > 0), density, 0.0)


class DispersionModel:
    """
    Per-sample-cell dispersion over a fixed set of co-registered rasters.

    The model holds only read-only inputs, so one instance can be shared by
    any number of workers.
    """

    def __init__(self, elevation: Grid, wind: WindModel, params: PhysicalParameters):
        """
        Initialize dispersion model.

        Args:
            elevation: Elevation raster (m)
            wind: Wind model co-registered with the elevation raster
            params: Physical parameters of the particle class
        """
        check_coregistered(elevation, wind.direction, wind.speed)
        self.elevation = elevation
        self.wind = wind
        self.params = params
        self.vg = params.settling_velocity

    @property
    def grid(self) -> Grid:
        return self.elevation

    def density(self, cell: SampleCell):
        """
        Unnormalized deposition density for one sample cell.

        Returns:
            Tuple of (density array, boolean array of diverged cells)
        """
        geometry = GeometryFields(self.elevation, cell)
        x = geometry.distance
        y = self.wind.crosswind_distance(x, geometry.bearing).filled(np.nan)
        dz = (self.elevation.data - cell.elevation).filled(np.nan)
        u = self.wind.speed.filled(np.nan)

        qx, diverged = plume_mass_field(x, dz, u, self.params, self.vg)
        density = dispersion_density(x, y, dz, u, qx, self.params, self.vg)
        return density, diverged

    def disperse(self, cell: SampleCell) -> DispersionRaster:
        """
        Probability mass raster for one sample cell.

        Density is converted to per-cell mass by the cell area and divided by
        the raster total. A sample cell with zero total mass is returned
        all-zero and flagged as degenerate.

        Args:
            cell: Sample cell acting as the deposition site

        Returns:
            DispersionRaster summing to 1, or all zeros when degenerate
        """
        density, diverged = self.density(cell)
        mass = density * self.elevation.cell_area
        total = float(np.sum(mass))

        diagnostics: List[SourceAreaWarning] = []
        if diverged.any():
            diagnostics.append(DivergentCells(cell.row, cell.col, int(diverged.sum())))
        if total > 0 and np.isfinite(total):
            values = mass / total
        else:
            total = 0.0
            values = np.zeros_like(mass)
            diagnostics.append(DegenerateSource(cell.row, cell.col))

        return DispersionRaster(cell=cell, values=values, total_mass=total,
                                diagnostics=diagnostics)
