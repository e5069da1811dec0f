"""
Raster providers: the inputs a source-area run consumes.

Acquisition, reprojection and polygon rasterisation happen upstream; a
provider hands over co-registered rasters and the watershed sample cells.
"""

import logging
import numpy as np
from pathlib import Path
from typing import List, Optional, Protocol

from affine import Affine

from .errors import MissingInput, ShapeMismatch
from .geometry import SampleCell
from .grid import Grid, check_coregistered


class RasterProvider(Protocol):
    """Source of co-registered input rasters and watershed sample cells."""

    def elevation(self) -> Grid: ...

    def wind_direction(self) -> Grid: ...

    def wind_speed(self) -> Grid: ...

    def sample_cells(self) -> List[SampleCell]: ...


def sample_cells_from_mask(elevation: Grid, watershed: np.ndarray) -> List[SampleCell]:
    """
    Sample cells for every watershed cell with a valid elevation.

    Args:
        elevation: Elevation raster
        watershed: Boolean raster, True inside the watershed boundary

    Returns:
        SampleCells in row-major order
    """
    watershed = np.asarray(watershed, dtype=bool)
    if watershed.shape != elevation.shape:
        raise ShapeMismatch(
            f"watershed shape {watershed.shape} does not match elevation {elevation.shape}"
        )
    inside = watershed & ~np.ma.getmaskarray(elevation.data)
    rows, cols = np.nonzero(inside)
    return [SampleCell.from_grid(elevation, int(r), int(c)) for r, c in zip(rows, cols)]


class ArrayRasterProvider:
    """In-memory provider over already materialised grids."""

    def __init__(self, elevation: Grid, wind_direction: Grid, wind_speed: Grid,
                 watershed: np.ndarray):
        check_coregistered(elevation, wind_direction, wind_speed)
        self._elevation = elevation
        self._wind_direction = wind_direction
        self._wind_speed = wind_speed
        self._cells = sample_cells_from_mask(elevation, watershed)

    def elevation(self) -> Grid:
        return self._elevation

    def wind_direction(self) -> Grid:
        return self._wind_direction

    def wind_speed(self) -> Grid:
        return self._wind_speed

    def sample_cells(self) -> List[SampleCell]:
        return list(self._cells)


class NpzRasterProvider(ArrayRasterProvider):
    """Provider reading all inputs from a single ``.npz`` archive."""

    REQUIRED = ("elevation", "wind_direction", "wind_speed", "watershed", "transform")

    @classmethod
    def load(cls, path, nodata: Optional[float] = None) -> "NpzRasterProvider":
        """
        Load inputs from an ``.npz`` file.

        The archive holds ``elevation``, ``wind_direction``, ``wind_speed``
        and ``watershed`` arrays, a six-element ``transform`` (affine order
        a, b, c, d, e, f) and optionally a scalar ``nodata``.

        Args:
            path: Path to the archive
            nodata: NoData sentinel overriding the archive's own

        Returns:
            Provider over the loaded grids
        """
        path = Path(path)
        with np.load(path) as archive:
            missing = [key for key in cls.REQUIRED if key not in archive.files]
            if missing:
                raise MissingInput(f"{path}: missing arrays {', '.join(missing)}")
            if nodata is None and "nodata" in archive.files:
                nodata = float(archive["nodata"])
            transform = Affine(*np.asarray(archive["transform"], dtype=float)[:6])
            grids = [
                Grid.from_array(archive[key], transform, nodata=nodata)
                for key in ("elevation", "wind_direction", "wind_speed")
            ]
            watershed = archive["watershed"].astype(bool)

        logging.info("Loaded %dx%d inputs from %s (resolution %.2f)",
                     grids[0].width, grids[0].height, path, grids[0].resolution)
        return cls(*grids, watershed)
