"""
Geometry module: sample cells and per-cell distance and bearing rasters.
"""

import numpy as np
from dataclasses import dataclass
from scipy import ndimage

from .grid import Grid


@dataclass(frozen=True)
class SampleCell:
    """One cell inside the watershed boundary."""

    row: int
    col: int
    x: float
    y: float
    elevation: float

    @classmethod
    def from_grid(cls, elevation: Grid, row: int, col: int) -> "SampleCell":
        """Sample the elevation grid at a cell index."""
        x, y = elevation.xy(row, col)
        return cls(row=row, col=col, x=x, y=y, elevation=float(elevation.data[row, col]))


class GeometryFields:
    """
    Distance and bearing rasters from every grid cell to one sample cell.

    Both rasters are computed on construction and cover the whole grid.
    """

    def __init__(self, grid: Grid, cell: SampleCell):
        self.grid = grid
        self.cell = cell
        self.distance = distance_to(grid, cell)
        self.bearing = direction_to_mask(grid, source_mask(grid, cell))


def distance_to(grid: Grid, cell: SampleCell) -> np.ndarray:
    """Euclidean distance from each cell centre to the sample cell."""
    xs, ys = grid.cell_centers()
    return np.hypot(xs - cell.x, ys - cell.y)


def source_mask(grid: Grid, cell: SampleCell) -> Grid:
    """Raster that is NoData everywhere except at the sample cell."""
    values = np.zeros(grid.shape)
    absent = np.ones(grid.shape, dtype=bool)
    absent[cell.row, cell.col] = False
    values[cell.row, cell.col] = 1.0
    return Grid.from_array(values, grid.transform, mask=absent)


def direction_to_mask(grid: Grid, mask: Grid) -> np.ndarray:
    """
    Compass azimuth from each cell to the nearest present cell of a mask.

    Args:
        grid: Grid providing the cell geometry
        mask: Co-registered grid whose present cells are the targets

    Returns:
        Array of azimuths in degrees [0, 360), 0 = north, clockwise;
        target cells themselves get 0
    """
    background = np.ma.getmaskarray(mask.data)
    _, (target_rows, target_cols) = ndimage.distance_transform_edt(
        background,
        sampling=(grid.resolution, grid.resolution),
        return_indices=True,
    )
    xs, ys = grid.cell_centers()
    tx, ty = grid.transform @ (target_cols + 0.5, target_rows + 0.5)
    azimuth = np.degrees(np.arctan2(tx - xs, ty - ys))
    return np.mod(azimuth, 360.0)
