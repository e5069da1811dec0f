"""
Source Area Simulator - watershed source-area estimation by inverted Gaussian plume.

This package estimates where material deposited at a sampling site most likely
originated within its drainage basin.
"""

__version__ = "0.1.0"
__author__ = "source_area_sim contributors"

from .grid import Grid
from .particle import PhysicalParameters, settling_velocity
from .geometry import GeometryFields, SampleCell
from .atmosphere import WindModel, deposition_direction
from .plume import plume_mass, turbulence_integral
from .dispersion import DispersionModel, DispersionRaster
from .bands import BandClassifier, ClassificationResult
from .provider import ArrayRasterProvider, NpzRasterProvider, RasterProvider
from .simulator import Aggregator, SourceAreaResult, SourceAreaRunner, SourceAreaSimulator
from .output import RasterOutput
from .errors import (
    DegenerateSource,
    DivergentCells,
    EmptyBand,
    IntegrationDivergence,
    MissingInput,
    ShapeMismatch,
    SourceAreaError,
    SourceAreaWarning,
)

__all__ = [
    "Grid",
    "PhysicalParameters",
    "settling_velocity",
    "GeometryFields",
    "SampleCell",
    "WindModel",
    "deposition_direction",
    "plume_mass",
    "turbulence_integral",
    "DispersionModel",
    "DispersionRaster",
    "BandClassifier",
    "ClassificationResult",
    "ArrayRasterProvider",
    "NpzRasterProvider",
    "RasterProvider",
    "Aggregator",
    "SourceAreaResult",
    "SourceAreaRunner",
    "SourceAreaSimulator",
    "RasterOutput",
    "DegenerateSource",
    "DivergentCells",
    "EmptyBand",
    "IntegrationDivergence",
    "MissingInput",
    "ShapeMismatch",
    "SourceAreaError",
    "SourceAreaWarning",
]
