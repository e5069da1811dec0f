"""
Error taxonomy for source-area simulation.

``SourceAreaError`` subclasses are raised. Structural problems (rasters that
do not line up, missing inputs) abort the run. ``IntegrationDivergence`` is
raised by the quadrature and caught per cell: the cell is zeroed and a
``DivergentCells`` warning is recorded. Numerical edge cases that are
recovered locally are ``SourceAreaWarning`` subclasses; they are logged and
collected as diagnostics instead of being raised.

Exceptions carrying fields pass them to ``Exception.__init__`` so they
survive pickling between worker processes.
"""


class SourceAreaError(Exception):
    """Base class for source-area errors."""


class ShapeMismatch(SourceAreaError, ValueError):
    """Input rasters are not co-registered (shape, transform or resolution)."""


class MissingInput(SourceAreaError):
    """A required raster or the sample cell list is missing or empty."""


class IntegrationDivergence(SourceAreaError, ArithmeticError):
    """The turbulence integral did not converge within tolerance."""

    def __init__(self, xi: float, reason: str):
        super().__init__(xi, reason)
        self.xi = xi
        self.reason = reason

    def __str__(self):
        return f"turbulence integral diverged at xi={self.xi:g}: {self.reason}"


class SourceAreaWarning(UserWarning):
    """Base class for recovered numerical conditions."""


class DivergentCells(SourceAreaWarning):
    """Some cells of one dispersion raster were zeroed after divergence."""

    def __init__(self, row: int, col: int, count: int):
        super().__init__(row, col, count)
        self.row = row
        self.col = col
        self.count = count

    def __str__(self):
        return (f"sample cell ({self.row}, {self.col}): {self.count} cell(s) zeroed "
                f"after turbulence integral divergence")


class DegenerateSource(SourceAreaWarning):
    """A sample cell produced no dispersion at all; it contributes zeros."""

    def __init__(self, row: int, col: int):
        super().__init__(row, col)
        self.row = row
        self.col = col

    def __str__(self):
        return f"sample cell ({self.row}, {self.col}) produced no dispersion"


class EmptyBand(SourceAreaWarning):
    """A confidence band has no cutoff because the first value exceeds it."""

    def __init__(self, fraction: float):
        super().__init__(fraction)
        self.fraction = fraction

    def __str__(self):
        return f"confidence band {self.fraction:g} is empty"
