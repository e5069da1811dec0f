"""
Confidence band classification of an aggregate probability raster.
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .errors import EmptyBand
from .grid import Grid


DEFAULT_FRACTIONS = (0.68, 0.95, 0.997)


@dataclass(frozen=True)
class ClassificationResult:
    """
    Banded labels for an aggregate raster.

    Labels run from 0 (unclassified) up to the number of bands; the band
    holding the smallest fraction gets the highest label.
    """

    labels: np.ndarray
    fractions: tuple
    cutoffs: Dict[float, Optional[float]]
    diagnostics: List[EmptyBand] = field(default_factory=list)

    @property
    def empty_bands(self) -> List[float]:
        return [p for p in self.fractions if self.cutoffs[p] is None]

    def cell_counts(self) -> Dict[int, int]:
        """Number of cells carrying each label."""
        return {label: int(np.sum(self.labels == label))
                for label in range(len(self.fractions) + 1)}


def cumulative_mass(values: np.ndarray) -> np.ndarray:
    """
    Cumulative probability mass of values sorted in descending order.

    Args:
        values: Descending non-negative values

    Returns:
        Running sum divided by the total (all zeros if the total is 0)
    """
    running = np.cumsum(values)
    total = running[-1] if running.size else 0.0
    if total <= 0:
        return np.zeros_like(running)
    return running / total


class BandClassifier:
    """Assign cells to nested confidence bands by cumulative mass."""

    def __init__(self, fractions: Sequence[float] = DEFAULT_FRACTIONS):
        fractions = tuple(float(p) for p in fractions)
        if not fractions:
            raise ValueError("at least one band fraction is required")
        if any(not 0 < p < 1 for p in fractions):
            raise ValueError(f"band fractions must lie in (0, 1): {fractions}")
        if any(b <= a for a, b in zip(fractions, fractions[1:])):
            raise ValueError(f"band fractions must be strictly increasing: {fractions}")
        self.fractions = fractions

    def cutoffs(self, values: np.ndarray) -> Dict[float, Optional[float]]:
        """
        Cutoff value per band fraction.

        Finds the last position where the descending cumulative mass is
        still below p; the cutoff is the value that carries the cumulative
        mass past p, i.e. the next one. For [10, 8, 6, 4, 2] and p = 0.68
        the cumulative mass is 0.6 at 8 and 0.8 at 6, so the cutoff is 6.
        If the first value alone reaches p no position qualifies and the
        band has no cutoff (None).
        """
        ordered = np.sort(values[np.isfinite(values)])[::-1]
        cumulative = cumulative_mass(ordered)
        result = {}
        for p in self.fractions:
            below = np.flatnonzero(cumulative < p)
            if below.size == 0:
                result[p] = None
                continue
            index = min(below[-1] + 1, ordered.size - 1)
            result[p] = float(ordered[index])
        return result

    def classify(self, aggregate: Grid) -> ClassificationResult:
        """
        Label every cell of an aggregate raster.

        Args:
            aggregate: Aggregate probability raster

        Returns:
            ClassificationResult with labels and cutoffs
        """
        cutoffs = self.cutoffs(aggregate.sorted_values())
        values = aggregate.filled(0.0)
        labels = np.zeros(aggregate.shape, dtype=np.int8)

        diagnostics = []
        # Widest band first so narrower bands overwrite it
        for rank, p in enumerate(reversed(self.fractions), start=1):
            cutoff = cutoffs[p]
            if cutoff is None:
                logging.warning("Confidence band %.3f is empty", p)
                diagnostics.append(EmptyBand(p))
                continue
            labels[(values >= cutoff) & (values > 0)] = rank

        logging.debug("Band cutoffs: %s", cutoffs)
        return ClassificationResult(
            labels=labels,
            fractions=self.fractions,
            cutoffs=cutoffs,
            diagnostics=diagnostics,
        )
