"""
Atmospheric model for source-area simulation.

Provides wind direction in deposition convention and the crosswind offset
of each cell from the downwind centreline through a sample cell.
"""

import numpy as np

from .grid import Grid, check_coregistered


def deposition_direction(wind_direction: Grid) -> Grid:
    """
    Convert meteorological wind direction to deposition direction.

    Meteorological convention gives the direction wind comes FROM; the
    deposition convention gives the direction material moves TOWARD.

    Args:
        wind_direction: Wind direction raster (degrees, 0=North, 90=East)

    Returns:
        New raster reversed by 180 degrees and wrapped into [1, 360);
        a wrapped value of exactly 0 becomes 1
    """
    def reverse(values):
        toward = np.ma.mod(values + 180.0, 360.0)
        return np.ma.where(toward == 0, 1.0, toward)

    return wind_direction.map(reverse)


class WindModel:
    """
    Wind field shared by every sample cell of a run.

    Holds the deposition-direction raster (derived once) and the wind-speed
    raster.
    """

    def __init__(self, direction: Grid, speed: Grid):
        """
        Initialize wind model.

        Args:
            direction: Deposition direction raster (degrees, toward)
            speed: Wind speed raster (m/s), co-registered with direction
        """
        check_coregistered(direction, speed)
        self.direction = direction
        self.speed = speed

    @classmethod
    def from_meteorological(cls, wind_direction: Grid, wind_speed: Grid) -> "WindModel":
        """Build a wind model from a raw meteorological direction raster."""
        return cls(deposition_direction(wind_direction), wind_speed)

    def wind_diff_radians(self, bearing: np.ndarray) -> np.ma.MaskedArray:
        """Angle between bearing-to-source and deposition direction, in radians."""
        return np.radians(bearing - self.direction.data)

    def crosswind_distance(self, distance: np.ndarray, bearing: np.ndarray) -> np.ma.MaskedArray:
        """
        Chord length between the straight path to the source and the wind path.

        Args:
            distance: Distance from each cell to the sample cell
            bearing: Azimuth from each cell to the sample cell (degrees)

        Returns:
            Crosswind distance per cell; NoData where wind direction is NoData
        """
        diff = self.wind_diff_radians(bearing)
        chord = 2 * np.square(distance) * (1 - np.ma.cos(diff))
        # 1 - cos can round slightly below zero
        return np.ma.sqrt(np.ma.maximum(chord, 0.0))
