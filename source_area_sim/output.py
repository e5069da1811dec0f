"""
Output module for georeferenced source-area rasters.

Produces PNG images with PGW world files for GIS compatibility, plus an
``.npz`` archive of the raw arrays.
"""

import numpy as np

from .grid import Grid, coefficients


BAND_COLORS = ["#ffffff00", "#fee391", "#fe9929", "#cc4c02"]


class RasterOutput:
    """
    Georeferenced output for an aggregate probability raster.

    Produces PNG images with PGW world files for GIS compatibility.
    """

    def __init__(self, grid: Grid):
        """
        Initialize raster output generator.

        Args:
            grid: Aggregate probability raster
        """
        self.grid = grid
        self.values = grid.filled(0.0)

    @property
    def extent(self):
        """(min_x, max_x, min_y, max_y) of the raster's outer edges."""
        x0, y0 = self.grid.transform @ (0, 0)
        x1, y1 = self.grid.transform @ (self.grid.width, self.grid.height)
        return [min(x0, x1), max(x0, x1), min(y0, y1), max(y0, y1)]

    def save_raster(self, filename: str, colormap: str = "viridis"):
        """
        Save the probability raster as PNG with PGW world file.

        Args:
            filename: Output filename (without extension)
            colormap: Matplotlib colormap name
        """
        import matplotlib.pyplot as plt
        from matplotlib.colors import LogNorm

        fig, ax = plt.subplots(figsize=(10, 8))

        positive = self.values[self.values > 0]
        vmax = float(np.max(positive)) if positive.size else 1.0
        vmin = float(np.min(positive)) if positive.size else 1e-12

        if vmax / vmin > 100:
            norm = LogNorm(vmin=max(vmin, vmax * 1e-8), vmax=vmax)
            shown = np.ma.masked_less_equal(self.values, 0)
        else:
            norm = None
            shown = self.values

        im = ax.imshow(
            shown,
            extent=self.extent,
            cmap=colormap,
            norm=norm,
            interpolation="nearest",
        )
        plt.colorbar(im, ax=ax, label="Source probability")
        ax.set_xlabel("Easting")
        ax.set_ylabel("Northing")
        ax.set_title("Source Area Probability")

        plt.savefig(f"{filename}.png", dpi=150, bbox_inches="tight")
        plt.close(fig)

        self._save_world_file(filename)

    def save_classification(self, filename: str, classification):
        """
        Save confidence band labels as PNG with PGW world file.

        Args:
            filename: Output filename (without extension)
            classification: ClassificationResult for this raster
        """
        import matplotlib
        import matplotlib.pyplot as plt
        from matplotlib.colors import BoundaryNorm, ListedColormap, to_hex
        from matplotlib.patches import Patch

        bands = len(classification.fractions)
        colors = BAND_COLORS
        if bands >= len(BAND_COLORS):
            ramp = matplotlib.colormaps["YlOrBr"](np.linspace(0.3, 1.0, bands))
            colors = [BAND_COLORS[0]] + [to_hex(c) for c in ramp]
        cmap = ListedColormap(colors[: bands + 1])
        norm = BoundaryNorm(np.arange(-0.5, bands + 1), cmap.N)

        fig, ax = plt.subplots(figsize=(10, 8))
        ax.imshow(classification.labels, extent=self.extent, cmap=cmap, norm=norm,
                  interpolation="nearest")

        handles = []
        for rank, p in enumerate(reversed(classification.fractions), start=1):
            label = f"{p * 100:g}%"
            if classification.cutoffs[p] is None:
                label += " (empty)"
            handles.append(Patch(color=colors[rank], label=label))
        ax.legend(handles=handles[::-1], loc="upper right", title="Confidence band")
        ax.set_xlabel("Easting")
        ax.set_ylabel("Northing")
        ax.set_title("Source Area Confidence Bands")

        plt.savefig(f"{filename}.png", dpi=150, bbox_inches="tight")
        plt.close(fig)

        self._save_world_file(filename)

    def save_arrays(self, filename: str, classification=None):
        """
        Save raw arrays to ``<filename>.npz``.

        Cutoffs of empty bands are stored as NaN.
        """
        arrays = {
            "aggregate": self.values,
            "transform": np.array(coefficients(self.grid.transform)),
        }
        if classification is not None:
            arrays["labels"] = classification.labels
            arrays["fractions"] = np.array(classification.fractions)
            arrays["cutoffs"] = np.array([
                np.nan if classification.cutoffs[p] is None else classification.cutoffs[p]
                for p in classification.fractions
            ])
        np.savez_compressed(f"{filename}.npz", **arrays)

    def _save_world_file(self, filename: str):
        """
        Save PGW world file for georeferencing.

        The world file format has 6 lines:
        1. x-scale (pixel size in x direction)
        2. rotation about y-axis (usually 0)
        3. rotation about x-axis (usually 0)
        4. y-scale (negative pixel size in y direction)
        5. x-coordinate of upper-left pixel center
        6. y-coordinate of upper-left pixel center
        """
        t = self.grid.transform
        x_center, y_center = self.grid.xy(0, 0)
        with open(f"{filename}.pgw", 'w') as f:
            f.write(f"{t.a}\n")
            f.write(f"{t.d}\n")
            f.write(f"{t.b}\n")
            f.write(f"{t.e}\n")
            f.write(f"{x_center}\n")
            f.write(f"{y_center}\n")

    def get_grid_statistics(self) -> dict:
        """
        Get statistics about the probability grid.

        Returns:
            Dictionary with statistics
        """
        affected_cells = int(np.sum(self.values > 0))
        return {
            "total_mass": float(np.sum(self.values)),
            "max_probability": float(np.max(self.values)) if self.values.size else 0.0,
            "affected_cells": affected_cells,
            "total_cells": self.grid.width * self.grid.height,
            "affected_area": affected_cells * self.grid.cell_area,
        }
