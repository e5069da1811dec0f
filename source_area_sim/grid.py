"""
Grid module: immutable georeferenced rasters.

A Grid pairs a masked 2-D array with an affine transform. Masked cells are
NoData; arithmetic on masked arrays keeps them NoData.
"""

import numpy as np
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from affine import Affine

from .errors import ShapeMismatch


@dataclass(frozen=True)
class Grid:
    """A co-registrable raster with explicit NoData mask."""

    data: np.ma.MaskedArray
    transform: Affine

    @classmethod
    def from_array(
        cls,
        array,
        transform: Affine,
        nodata: Optional[float] = None,
        mask=None,
    ) -> "Grid":
        """
        Build a Grid from raw values.

        Args:
            array: 2-D array-like of cell values
            transform: Affine mapping (col, row) to real-world (x, y)
            nodata: Optional sentinel value marking absent cells
            mask: Optional boolean array, True where cells are absent

        Returns:
            New read-only Grid
        """
        values = np.array(array, dtype=np.float64)
        if values.ndim != 2:
            raise ShapeMismatch(f"grid must be 2-D, got shape {values.shape}")

        absent = ~np.isfinite(values)
        if nodata is not None:
            absent |= values == nodata
        if mask is not None:
            mask = np.asarray(mask, dtype=bool)
            if mask.shape != values.shape:
                raise ShapeMismatch(
                    f"mask shape {mask.shape} does not match grid shape {values.shape}"
                )
            absent |= mask

        if abs(transform.a) != abs(transform.e) or transform.b or transform.d:
            raise ShapeMismatch("grid cells must be square and north-up")

        data = np.ma.array(values, mask=absent.copy())
        data.setflags(write=False)
        return cls(data=data, transform=transform)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def resolution(self) -> float:
        """Cell edge length in real-world units."""
        return abs(self.transform.a)

    @property
    def cell_area(self) -> float:
        return self.resolution ** 2

    def xy(self, row: int, col: int) -> Tuple[float, float]:
        """Real-world coordinate of a cell centre."""
        x, y = self.transform @ (col + 0.5, row + 0.5)
        return float(x), float(y)

    def rowcol(self, x: float, y: float) -> Tuple[int, int]:
        """Index of the cell containing a real-world coordinate."""
        col, row = ~self.transform @ (x, y)
        return int(np.floor(row)), int(np.floor(col))

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Real-world coordinates of every cell centre.

        Returns:
            Tuple of (xs, ys), each shaped like the grid
        """
        rows, cols = np.indices(self.shape, dtype=np.float64)
        xs, ys = self.transform @ (cols + 0.5, rows + 0.5)
        return np.asarray(xs), np.asarray(ys)

    def with_data(self, data) -> "Grid":
        """New Grid on the same transform with the given values."""
        values = np.ma.asarray(data)
        if values.shape != self.shape:
            raise ShapeMismatch(
                f"data shape {values.shape} does not match grid shape {self.shape}"
            )
        return Grid.from_array(
            values.filled(np.nan), self.transform, mask=np.ma.getmaskarray(values)
        )

    def map(self, func: Callable[[np.ma.MaskedArray], np.ma.MaskedArray]) -> "Grid":
        """Apply an elementwise function, returning a new Grid."""
        with np.errstate(invalid="ignore", divide="ignore"):
            return self.with_data(func(self.data))

    def combine(self, func: Callable, *others: "Grid") -> "Grid":
        """
        Combine this grid with co-registered grids elementwise.

        Args:
            func: Called with this grid's data followed by each other's data
            *others: Grids sharing this grid's shape and transform

        Returns:
            New Grid holding func's result
        """
        check_coregistered(self, *others)
        with np.errstate(invalid="ignore", divide="ignore"):
            return self.with_data(func(self.data, *(g.data for g in others)))

    def filled(self, value: float = 0.0) -> np.ndarray:
        """Plain array with NoData replaced by ``value``; treat it as read-only."""
        return self.data.filled(value)

    def total(self) -> float:
        """Sum of all present, finite values."""
        values = self.data.compressed()
        return float(np.sum(values[np.isfinite(values)]))

    def sorted_values(self, descending: bool = True) -> np.ndarray:
        """Present, finite values in sorted order."""
        values = self.data.compressed()
        values = np.sort(values[np.isfinite(values)])
        return values[::-1] if descending else values


def check_coregistered(*grids: Grid):
    """
    Verify that all grids share shape and transform.

    Raises:
        ShapeMismatch: If any grid differs from the first
    """
    if not grids:
        return
    first = grids[0]
    for index, grid in enumerate(grids[1:], start=1):
        if grid.shape != first.shape:
            raise ShapeMismatch(
                f"grid {index} has shape {grid.shape}, expected {first.shape}"
            )
        expected = coefficients(first.transform)
        actual = coefficients(grid.transform)
        if not np.allclose(actual, expected, rtol=0, atol=1e-9 * first.resolution):
            raise ShapeMismatch(
                f"grid {index} transform {actual} differs from {expected}"
            )


def coefficients(transform: Affine) -> Tuple[float, ...]:
    """The six affine coefficients (a, b, c, d, e, f)."""
    return (transform.a, transform.b, transform.c, transform.d, transform.e, transform.f)
