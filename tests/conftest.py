"""
Shared fixtures for source-area tests.
"""

import numpy as np
import pytest
from affine import Affine

from source_area_sim import Grid


RESOLUTION = 200.0


@pytest.fixture
def transform():
    """North-up 200 m grid with its upper-left corner at (0, 2000)."""
    return Affine(RESOLUTION, 0.0, 0.0, 0.0, -RESOLUTION, 2000.0)


@pytest.fixture
def flat_grids(transform):
    """
    Flat 10x10 terrain with wind from the west (toward 90 degrees) at 5 m/s.

    Returns:
        Tuple of (elevation, wind_direction, wind_speed) grids
    """
    shape = (10, 10)
    elevation = Grid.from_array(np.full(shape, 100.0), transform)
    wind_direction = Grid.from_array(np.full(shape, 270.0), transform)
    wind_speed = Grid.from_array(np.full(shape, 5.0), transform)
    return elevation, wind_direction, wind_speed
