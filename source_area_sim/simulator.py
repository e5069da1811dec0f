"""
Main simulator module integrating all components.

Runs the dispersion model once per watershed sample cell in parallel, folds
the per-cell rasters into one aggregate and classifies it into confidence
bands.
"""

import logging
import os
import time as pytime
import numpy as np
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from .atmosphere import WindModel
from .bands import DEFAULT_FRACTIONS, BandClassifier, ClassificationResult
from .dispersion import DispersionModel, DispersionRaster
from .errors import DegenerateSource, MissingInput, ShapeMismatch, SourceAreaWarning
from .geometry import SampleCell
from .grid import Grid, check_coregistered
from .output import RasterOutput
from .particle import PhysicalParameters


# Model shared by the tasks of one worker process, set by the pool initializer
_WORKER_MODEL: Optional[DispersionModel] = None


def _init_worker(model: DispersionModel):
    global _WORKER_MODEL
    _WORKER_MODEL = model


def _disperse(cell: SampleCell) -> DispersionRaster:
    return _WORKER_MODEL.disperse(cell)


class Aggregator:
    """
    Order-independent sum of dispersion rasters.

    Only the thread that owns the aggregator calls ``add``; workers hand
    back their rasters instead of touching the running total.
    """

    def __init__(self, template: Grid):
        self.template = template
        self.total = np.zeros(template.shape)
        self.count = 0
        self.diagnostics: List[SourceAreaWarning] = []

    def add(self, raster: DispersionRaster):
        """Add one dispersion raster; NaN cells count as 0."""
        values = np.asarray(raster.values, dtype=np.float64)
        if values.shape != self.total.shape:
            raise ShapeMismatch(
                f"raster shape {values.shape} does not match {self.total.shape}"
            )
        self.total += np.where(np.isfinite(values), values, 0.0)
        self.count += 1
        self.diagnostics.extend(raster.diagnostics)

    def finalize(self) -> Grid:
        """
        Aggregate raster divided by the number of sample cells.

        Raises:
            MissingInput: If no raster was added
        """
        if self.count == 0:
            raise MissingInput("no dispersion rasters to aggregate")
        return self.template.with_data(self.total / self.count)


def aggregate(rasters: Iterable[DispersionRaster], template: Grid) -> Grid:
    """Sum dispersion rasters and normalize by their count."""
    aggregator = Aggregator(template)
    for raster in rasters:
        aggregator.add(raster)
    return aggregator.finalize()


class SourceAreaRunner:
    """
    Parallel map of the dispersion model over sample cells.

    Each task reads only the shared model and returns its own raster; the
    model is sent once to each worker process.
    """

    def __init__(self, model: DispersionModel, workers: Optional[int] = None):
        """
        Initialize runner.

        Args:
            model: Dispersion model shared by all tasks
            workers: Worker process count (default: CPU count; 1 runs serially)
        """
        self.model = model
        self.workers = workers or os.cpu_count() or 1

    def iter_rasters(self, cells: Sequence[SampleCell]) -> Iterator[DispersionRaster]:
        """
        Yield one dispersion raster per sample cell, in completion order.

        A failing task cancels the remaining ones and re-raises.
        """
        if self.workers <= 1 or len(cells) <= 1:
            for cell in cells:
                yield self.model.disperse(cell)
            return

        workers = min(self.workers, len(cells))
        logging.debug("Dispersing %d sample cells over %d workers", len(cells), workers)
        executor = ProcessPoolExecutor(
            max_workers=workers, initializer=_init_worker, initargs=(self.model,)
        )
        try:
            future_to_cell = {executor.submit(_disperse, cell): cell for cell in cells}
            for future in as_completed(future_to_cell):
                cell = future_to_cell[future]
                try:
                    raster = future.result()
                except Exception as exc:
                    logging.error("Sample cell (%d, %d) failed: %s", cell.row, cell.col, exc)
                    raise
                yield raster
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def run(
        self,
        cells: Sequence[SampleCell],
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> Aggregator:
        """
        Disperse every sample cell and fold the results.

        Args:
            cells: Watershed sample cells
            progress_callback: Optional callback function(completed, total)

        Returns:
            Aggregator holding the running total and diagnostics
        """
        if not cells:
            raise MissingInput("no sample cells inside the watershed")

        aggregator = Aggregator(self.model.grid)
        step = max(1, len(cells) // 100)
        for completed, raster in enumerate(self.iter_rasters(cells), start=1):
            aggregator.add(raster)
            if progress_callback and (completed % step == 0 or completed == len(cells)):
                progress_callback(completed, len(cells))
        return aggregator


@dataclass
class SourceAreaResult:
    """Outputs of one source-area run."""

    aggregate: Grid
    classification: ClassificationResult
    cell_count: int
    diagnostics: List[SourceAreaWarning] = field(default_factory=list)


class SourceAreaSimulator:
    """
    Main source-area simulator.

    Estimates, for a watershed, the probability that material deposited at
    the sampling site came from each upstream cell.
    """

    def __init__(
        self,
        provider,
        params: Optional[PhysicalParameters] = None,
        band_fractions: Sequence[float] = DEFAULT_FRACTIONS,
        workers: Optional[int] = None,
    ):
        """
        Initialize source-area simulator.

        Args:
            provider: RasterProvider supplying rasters and sample cells
            params: Physical parameters (defaults if None)
            band_fractions: Cumulative mass fractions of the confidence bands
            workers: Worker process count (default: CPU count)

        Raises:
            ShapeMismatch: If the input rasters are not co-registered
            MissingInput: If the provider yields no sample cells
        """
        self.params = params or PhysicalParameters()
        self.classifier = BandClassifier(band_fractions)

        elevation = provider.elevation()
        wind_direction = provider.wind_direction()
        wind_speed = provider.wind_speed()
        for name, grid in (("elevation", elevation), ("wind direction", wind_direction),
                           ("wind speed", wind_speed)):
            if grid is None:
                raise MissingInput(f"{name} raster is missing")
        check_coregistered(elevation, wind_direction, wind_speed)

        self.cells = provider.sample_cells()
        if not self.cells:
            raise MissingInput("no sample cells inside the watershed")

        # Wind direction is reversed once per run, not per sample cell
        self.wind = WindModel.from_meteorological(wind_direction, wind_speed)
        self.model = DispersionModel(elevation, self.wind, self.params)
        self.runner = SourceAreaRunner(self.model, workers=workers)
        self.result: Optional[SourceAreaResult] = None
        self.elapsed = 0.0

    def run(self, progress_callback: Optional[Callable[[int, int], None]] = None) -> SourceAreaResult:
        """
        Run the whole watershed analysis.

        Args:
            progress_callback: Optional callback function(completed, total)

        Returns:
            SourceAreaResult with aggregate raster, classification and
            diagnostics
        """
        logging.info("Dispersing %d sample cells (d=%.0f um, vg=%.4f cm/s)",
                     len(self.cells), self.params.diameter, self.model.vg)
        started = pytime.time()

        aggregator = self.runner.run(self.cells, progress_callback)
        aggregate_grid = aggregator.finalize()
        classification = self.classifier.classify(aggregate_grid)

        diagnostics = aggregator.diagnostics + classification.diagnostics
        for warning in aggregator.diagnostics:
            logging.warning("%s", warning)

        self.elapsed = pytime.time() - started
        logging.info("Source area complete in %.1f s (aggregate mass %.6f)",
                     self.elapsed, aggregate_grid.total())

        self.result = SourceAreaResult(
            aggregate=aggregate_grid,
            classification=classification,
            cell_count=len(self.cells),
            diagnostics=diagnostics,
        )
        return self.result

    def generate_output(self, filename: str) -> RasterOutput:
        """
        Write aggregate and band rasters with world files.

        Args:
            filename: Output filename prefix (without extension)

        Returns:
            RasterOutput over the aggregate raster
        """
        if self.result is None:
            self.run()
        raster = RasterOutput(self.result.aggregate)
        raster.save_raster(filename)
        raster.save_classification(f"{filename}_bands", self.result.classification)
        raster.save_arrays(filename, self.result.classification)
        return raster

    def get_statistics(self) -> dict:
        """
        Get simulation statistics.

        Returns:
            Dictionary with statistics
        """
        stats = {
            "sample_cells": len(self.cells),
            "settling_velocity_cm_s": self.model.vg,
            "elapsed_seconds": self.elapsed,
        }
        if self.result is not None:
            classification = self.result.classification
            stats.update({
                "aggregate_mass": self.result.aggregate.total(),
                "degenerate_sources": sum(
                    1 for w in self.result.diagnostics if isinstance(w, DegenerateSource)
                ),
                "cutoffs": dict(classification.cutoffs),
                "band_cells": classification.cell_counts(),
            })
        return stats
