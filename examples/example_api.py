"""
Example script demonstrating the Python API on a synthetic valley.
"""

import numpy as np
from affine import Affine

from source_area_sim import ArrayRasterProvider, Grid, PhysicalParameters, SourceAreaSimulator


def make_valley(size=40, resolution=30.0):
    """Valley draining south-west with a prevailing westerly wind."""
    transform = Affine(resolution, 0.0, 500000.0, 0.0, -resolution, 4200000.0)
    rows, cols = np.indices((size, size))
    elevation = 400.0 + 3.0 * np.abs(cols - size / 2) + 2.0 * (size - rows)
    wind_direction = 260.0 + 10.0 * np.sin(rows / size * np.pi)
    wind_speed = np.full((size, size), 4.0)

    # Upper half of the valley floor drains to the sampling lake
    watershed = (np.abs(cols - size / 2) < size / 4) & (rows < size / 2)

    return ArrayRasterProvider(
        Grid.from_array(elevation, transform),
        Grid.from_array(wind_direction, transform),
        Grid.from_array(wind_speed, transform),
        watershed,
    )


def main():
    """Run example simulation."""
    print("Building synthetic valley...")
    provider = make_valley()

    print("Initializing simulator...")
    simulator = SourceAreaSimulator(
        provider,
        params=PhysicalParameters(plume_height=10.0, diameter=250.0),
    )

    print("Running simulation...")

    def progress(done, total):
        print(f"  {done}/{total} sample cells")

    simulator.run(progress_callback=progress)

    print("\nGenerating output...")
    raster = simulator.generate_output("example_api_output")

    print("\nSimulation statistics:")
    stats = simulator.get_statistics()
    for key, value in stats.items():
        print(f"  {key}: {value}")

    print("\nGrid statistics:")
    grid_stats = raster.get_grid_statistics()
    for key, value in grid_stats.items():
        print(f"  {key}: {value}")

    print("\nDone! Check example_api_output.png and example_api_output_bands.png")


if __name__ == "__main__":
    main()
