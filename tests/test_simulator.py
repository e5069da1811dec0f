"""
Tests for dispersion, aggregation, classification and the simulator.
"""

import json
import random

import numpy as np
import pytest

from source_area_sim import (
    Aggregator,
    ArrayRasterProvider,
    BandClassifier,
    DegenerateSource,
    DispersionModel,
    DivergentCells,
    EmptyBand,
    Grid,
    IntegrationDivergence,
    MissingInput,
    NpzRasterProvider,
    PhysicalParameters,
    SampleCell,
    ShapeMismatch,
    SourceAreaRunner,
    SourceAreaSimulator,
    WindModel,
)
from source_area_sim.bands import cumulative_mass
from source_area_sim.cli import main
from source_area_sim.dispersion import DispersionRaster, dispersion_density
from source_area_sim.grid import coefficients
from source_area_sim.simulator import aggregate


def make_model(grids, params=None):
    elevation, wind_direction, wind_speed = grids
    wind = WindModel.from_meteorological(wind_direction, wind_speed)
    return DispersionModel(elevation, wind, params or PhysicalParameters())


def corner_watershed(shape=(10, 10)):
    watershed = np.zeros(shape, dtype=bool)
    watershed[0, 0] = True
    watershed[-1, -1] = True
    return watershed


def test_flat_grid_dispersion_is_symmetric(flat_grids):
    """Test mirror symmetry about the downwind axis through the sample cell."""
    model = make_model(flat_grids)
    assert np.all(model.wind.direction.filled() == 90.0)

    raster = model.disperse(SampleCell.from_grid(flat_grids[0], 5, 5))
    values = raster.values

    assert values.sum() == pytest.approx(1.0, abs=1e-9)
    assert np.all(values >= 0)
    for k in range(1, 5):
        np.testing.assert_allclose(values[5 - k], values[5 + k], rtol=1e-7, atol=0)


def test_flat_grid_dispersion_decreases_with_distance(flat_grids):
    """Test that probability falls off along fixed bearings from the sample cell."""
    model = make_model(flat_grids)
    values = model.disperse(SampleCell.from_grid(flat_grids[0], 5, 5)).values

    upwind = values[5, 4::-1]
    downwind = values[5, 6:]
    north = values[4::-1, 5]
    north_west = np.array([values[5 - k, 5 - k] for k in range(1, 6)])

    assert np.all(np.diff(upwind) < 0)
    for profile in (downwind, north, north_west):
        assert np.all(np.diff(profile) <= 0)
    # Cells upwind of the sample carry the most mass
    assert np.unravel_index(np.argmax(values), values.shape) == (5, 4)


def test_zero_distance_is_zero(flat_grids):
    """Test that the sample cell itself contributes exactly 0."""
    model = make_model(flat_grids)
    values = model.disperse(SampleCell.from_grid(flat_grids[0], 5, 5)).values
    params = PhysicalParameters()

    density = dispersion_density(
        np.array([0.0, 200.0]), np.zeros(2), np.zeros(2), np.full(2, 5.0),
        np.full(2, 1000.0), params, params.settling_velocity,
    )

    assert values[5, 5] == 0.0
    assert density[0] == 0.0
    assert density[1] > 0.0


def test_still_air_is_degenerate(transform, flat_grids):
    """Test that zero wind speed yields zeros, not NaN."""
    elevation, wind_direction, _ = flat_grids
    still = Grid.from_array(np.zeros((10, 10)), transform)
    model = make_model((elevation, wind_direction, still))

    raster = model.disperse(SampleCell.from_grid(elevation, 5, 5))

    assert raster.degenerate
    assert not np.isnan(raster.values).any()
    assert np.all(raster.values == 0.0)
    assert any(isinstance(w, DegenerateSource) for w in raster.diagnostics)


def test_nodata_inputs_contribute_zero(transform, flat_grids):
    """Test that NoData wind or elevation cells are cleaned to 0."""
    elevation, wind_direction, wind_speed = flat_grids
    speed = wind_speed.filled().copy()
    speed[0, 0] = -9999.0
    holey = Grid.from_array(speed, transform, nodata=-9999.0)
    model = make_model((elevation, wind_direction, holey))

    raster = model.disperse(SampleCell.from_grid(elevation, 5, 5))

    assert raster.values[0, 0] == 0.0
    assert raster.values.sum() == pytest.approx(1.0, abs=1e-9)


def test_divergent_cells_are_reported(monkeypatch, flat_grids):
    """Test that a divergent integral zeroes one cell with a diagnostic."""
    from source_area_sim import plume

    real = plume.turbulence_integral
    calls = []

    def flaky(xi, m, rtol=plume.RTOL):
        calls.append(xi)
        if len(calls) == 1:
            raise IntegrationDivergence(xi, "forced")
        return real(xi, m, rtol)

    monkeypatch.setattr(plume, "turbulence_integral", flaky)
    model = make_model(flat_grids)

    raster = model.disperse(SampleCell.from_grid(flat_grids[0], 5, 5))

    # First active cell in row-major order is (0, 0)
    assert raster.values[0, 0] == 0.0
    assert raster.values.sum() == pytest.approx(1.0, abs=1e-9)
    divergent = [w for w in raster.diagnostics if isinstance(w, DivergentCells)]
    assert len(divergent) == 1 and divergent[0].count == 1


def test_aggregation_is_order_independent(flat_grids):
    """Test that summing rasters in any order gives the same aggregate."""
    model = make_model(flat_grids)
    cells = [SampleCell.from_grid(flat_grids[0], r, c) for r, c in [(0, 0), (2, 7), (5, 5), (9, 3)]]
    rasters = [model.disperse(cell) for cell in cells]

    reference = aggregate(rasters, flat_grids[0]).filled()
    rng = random.Random(7)
    for _ in range(5):
        shuffled = rasters[:]
        rng.shuffle(shuffled)
        np.testing.assert_allclose(aggregate(shuffled, flat_grids[0]).filled(), reference,
                                   rtol=0, atol=1e-6)

    assert reference.sum() == pytest.approx(1.0, abs=1e-9)


def test_aggregator_treats_undefined_cells_as_zero(flat_grids):
    """Test that NaN and infinite cells of one raster do not spoil another's."""
    model = make_model(flat_grids)
    cell = SampleCell.from_grid(flat_grids[0], 5, 5)
    clean = model.disperse(cell)
    values = clean.values.copy()
    values[0, 1] = np.nan
    values[2, 3] = np.inf
    values[4, 4] = -np.inf
    partial = DispersionRaster(cell, values, total_mass=1.0)

    aggregator = Aggregator(flat_grids[0])
    aggregator.add(clean)
    aggregator.add(partial)
    result = aggregator.finalize().filled()

    assert np.all(np.isfinite(result))
    assert np.all(result >= 0)
    for row, col in [(0, 1), (2, 3), (4, 4)]:
        assert result[row, col] == pytest.approx(clean.values[row, col] / 2)
    assert result[9, 9] == pytest.approx(clean.values[9, 9])


def test_aggregator_rejects_misaligned_raster(flat_grids):
    """Test that a raster of the wrong shape is refused."""
    cell = SampleCell.from_grid(flat_grids[0], 0, 0)

    with pytest.raises(ShapeMismatch):
        Aggregator(flat_grids[0]).add(DispersionRaster(cell, np.zeros((3, 3)), 0.0))


def test_aggregator_requires_rasters(flat_grids):
    """Test that an empty aggregation is refused."""
    with pytest.raises(MissingInput):
        Aggregator(flat_grids[0]).finalize()


def test_two_corner_cells_aggregate_to_one(flat_grids):
    """Test that two opposite-corner sample cells aggregate to total mass 1."""
    provider = ArrayRasterProvider(*flat_grids, corner_watershed())
    simulator = SourceAreaSimulator(provider, workers=1)

    result = simulator.run()

    assert result.cell_count == 2
    assert result.aggregate.total() == pytest.approx(1.0, abs=1e-9)
    assert np.all(result.aggregate.filled() >= 0)
    assert result.aggregate.shape == flat_grids[0].shape


def test_parallel_run_matches_serial(flat_grids):
    """Test that the process pool reproduces the serial aggregate."""
    watershed = corner_watershed()
    watershed[4, 6] = True
    provider = ArrayRasterProvider(*flat_grids, watershed)

    serial = SourceAreaSimulator(provider, workers=1).run()
    parallel = SourceAreaSimulator(provider, workers=2).run()

    np.testing.assert_allclose(parallel.aggregate.filled(), serial.aggregate.filled(),
                               rtol=0, atol=1e-12)
    for p, cutoff in serial.classification.cutoffs.items():
        assert parallel.classification.cutoffs[p] == pytest.approx(cutoff, rel=1e-9)


def test_runner_progress_callback(flat_grids):
    """Test progress reporting for every completed cell."""
    model = make_model(flat_grids)
    cells = [SampleCell.from_grid(flat_grids[0], 1, c) for c in range(3)]
    seen = []

    SourceAreaRunner(model, workers=1).run(cells, lambda done, total: seen.append((done, total)))

    assert seen == [(1, 3), (2, 3), (3, 3)]


def test_failed_cell_aborts_run(monkeypatch, flat_grids):
    """Test that one failing sample cell aborts the whole run."""
    provider = ArrayRasterProvider(*flat_grids, corner_watershed())
    simulator = SourceAreaSimulator(provider, workers=1)

    def broken(cell):
        raise RuntimeError("boom")

    monkeypatch.setattr(simulator.model, "disperse", broken)

    with pytest.raises(RuntimeError):
        simulator.run()
    assert simulator.result is None


def test_simulator_rejects_misaligned_inputs(transform, flat_grids):
    """Test that co-registration is checked before any work starts."""
    elevation, wind_direction, _ = flat_grids

    class MisalignedProvider:
        def elevation(self):
            return elevation

        def wind_direction(self):
            return wind_direction

        def wind_speed(self):
            return Grid.from_array(np.full((10, 9), 5.0), transform)

        def sample_cells(self):
            return [SampleCell.from_grid(elevation, 0, 0)]

    with pytest.raises(ShapeMismatch):
        SourceAreaSimulator(MisalignedProvider())


def test_simulator_requires_sample_cells(flat_grids):
    """Test that an empty watershed is a fatal error."""
    provider = ArrayRasterProvider(*flat_grids, np.zeros((10, 10), dtype=bool))

    with pytest.raises(MissingInput):
        SourceAreaSimulator(provider)


def test_cumulative_mass_toy_case():
    """Test cumulative mass and cutoffs on a toy value list."""
    values = np.array([10.0, 8.0, 6.0, 4.0, 2.0])

    np.testing.assert_allclose(cumulative_mass(values), [1 / 3, 0.6, 0.8, 14 / 15, 1.0])

    cutoffs = BandClassifier().cutoffs(values)
    assert cutoffs[0.68] == 6.0
    assert cutoffs[0.68] >= cutoffs[0.95] >= cutoffs[0.997]


def test_classification_labels(transform):
    """Test band labels, including zero and NoData cells."""
    grid = Grid.from_array([[10.0, 8.0, 6.0, 4.0, 2.0, 0.0, -1.0]], transform, nodata=-1.0)

    result = BandClassifier().classify(grid)

    assert result.labels.tolist() == [[3, 3, 3, 2, 2, 0, 0]]
    assert result.cutoffs == {0.68: 6.0, 0.95: 2.0, 0.997: 2.0}
    assert result.empty_bands == []
    assert result.cell_counts() == {0: 2, 1: 0, 2: 2, 3: 3}


def test_empty_band(transform):
    """Test that a band whose target is exceeded by the first value is empty."""
    grid = Grid.from_array([[0.8, 0.1, 0.1]], transform)

    result = BandClassifier().classify(grid)

    assert result.cutoffs[0.68] is None
    assert result.empty_bands == [0.68]
    assert not np.any(result.labels == 3)
    assert result.labels.tolist() == [[2, 2, 2]]
    assert isinstance(result.diagnostics[0], EmptyBand)


def test_band_fraction_validation():
    """Test rejection of unusable band fractions."""
    with pytest.raises(ValueError):
        BandClassifier([0.95, 0.68])
    with pytest.raises(ValueError):
        BandClassifier([0.5, 1.0])


def test_cutoffs_are_monotonic(flat_grids):
    """Test cutoff ordering on a simulated aggregate."""
    watershed = np.zeros((10, 10), dtype=bool)
    watershed[3:6, 3:6] = True
    result = SourceAreaSimulator(ArrayRasterProvider(*flat_grids, watershed), workers=1).run()

    cutoffs = result.classification.cutoffs
    assert all(c is not None and c >= 0 for c in cutoffs.values())
    assert cutoffs[0.68] >= cutoffs[0.95] >= cutoffs[0.997]
    assert np.any(result.classification.labels == 3)


def test_npz_provider(tmp_path, transform, flat_grids):
    """Test loading inputs from an archive."""
    elevation, wind_direction, wind_speed = flat_grids
    path = tmp_path / "inputs.npz"
    np.savez(
        path,
        elevation=elevation.filled(),
        wind_direction=wind_direction.filled(),
        wind_speed=wind_speed.filled(),
        watershed=corner_watershed(),
        transform=np.array(coefficients(transform)),
    )

    provider = NpzRasterProvider.load(path)

    assert [(c.row, c.col) for c in provider.sample_cells()] == [(0, 0), (9, 9)]
    assert provider.elevation().transform == transform

    np.savez(tmp_path / "broken.npz", elevation=elevation.filled())
    with pytest.raises(MissingInput):
        NpzRasterProvider.load(tmp_path / "broken.npz")


def test_generate_output(tmp_path, flat_grids):
    """Test raster, world file and array export."""
    simulator = SourceAreaSimulator(ArrayRasterProvider(*flat_grids, corner_watershed()),
                                    workers=1)
    prefix = str(tmp_path / "basin")

    raster = simulator.generate_output(prefix)

    for name in ("basin.png", "basin.pgw", "basin_bands.png", "basin_bands.pgw", "basin.npz"):
        assert (tmp_path / name).exists()
    world = (tmp_path / "basin.pgw").read_text().split()
    assert [float(v) for v in world] == [200.0, 0.0, 0.0, -200.0, 100.0, 1900.0]

    with np.load(tmp_path / "basin.npz") as arrays:
        assert arrays["aggregate"].sum() == pytest.approx(1.0, abs=1e-9)
        assert arrays["labels"].shape == (10, 10)
        assert arrays["cutoffs"].shape == (3,)

    stats = raster.get_grid_statistics()
    assert stats["total_mass"] == pytest.approx(1.0, abs=1e-9)
    assert stats["total_cells"] == 100

    summary = simulator.get_statistics()
    assert summary["sample_cells"] == 2
    assert summary["degenerate_sources"] == 0


def test_cli_runs_particle_classes(tmp_path, transform, flat_grids):
    """Test the command line with a JSON configuration file."""
    elevation, wind_direction, wind_speed = flat_grids
    inputs = tmp_path / "inputs.npz"
    np.savez(
        inputs,
        elevation=elevation.filled(),
        wind_direction=wind_direction.filled(),
        wind_speed=wind_speed.filled(),
        watershed=corner_watershed(),
        transform=np.array(coefficients(transform)),
    )
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"h": 12, "particle_classes": [125, 250], "workers": 1}))
    prefix = str(tmp_path / "run")

    status = main([str(inputs), "-c", str(config), "-o", prefix])

    assert status == 0
    assert (tmp_path / "run_d125.npz").exists()
    assert (tmp_path / "run_d250.npz").exists()


def test_cli_rejects_unknown_config_key(tmp_path, capsys):
    """Test that a bad configuration file exits with an error status."""
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"plume": 3}))

    assert main([str(tmp_path / "missing.npz"), "-c", str(config)]) == 1
    assert "unknown configuration key" in capsys.readouterr().err
