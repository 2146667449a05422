import math

import numpy as np
import pytest

from rfcoverage.core.exceptions import GPUUnavailableError
from rfcoverage.schemas import MaterialType, Transmitter
from rfcoverage.services.gpu_propagation import (
    GPUPropagationEngine,
    build_segment_buffer,
    build_transmitter_buffer,
    reference_power_dbm,
)
from rfcoverage.services.rf_propagation import CPUPropagationEngine, calculate_fspl


def test_segment_buffer_layout(square_room, concrete_room, config):
    buffer = build_segment_buffer([square_room], config)
    assert buffer.shape == (4, 5)
    assert buffer.dtype == np.float32
    # Generic wall loss plus drywall
    assert buffer[0].tolist() == [0.0, 0.0, 4.0, 0.0, 10.0]
    assert buffer[3].tolist() == [0.0, 4.0, 0.0, 0.0, 10.0]

    assert build_segment_buffer([concrete_room], config)[0, 4] == 15.0


def test_transmitter_buffer_reference_power(center_ap):
    buffer = build_transmitter_buffer([center_ap])
    assert buffer.shape == (1, 4)
    assert buffer[0, :3].tolist() == [2.0, 2.5, 2.0]
    expected = center_ap.eirp_dbm - calculate_fspl(1.0, 2400.0)
    assert buffer[0, 3] == pytest.approx(expected, abs=1e-4)
    assert reference_power_dbm(center_ap) == pytest.approx(expected)


@pytest.fixture
def gpu_engine(config):
    pytest.importorskip("torch")
    # The torch CPU device runs the same kernel without an accelerator
    return GPUPropagationEngine(config, device="cpu")


def test_unusable_device_raises():
    pytest.importorskip("torch")
    with pytest.raises(GPUUnavailableError):
        GPUPropagationEngine(device="not-a-device")


def test_agrees_with_cpu_inside_room(gpu_engine, config, square_room, center_ap):
    """Unobstructed cells match the reference model within 1 dB"""
    gpu_grid = gpu_engine.compute_signal_grid([square_room], [center_ap])
    cpu_grid = CPUPropagationEngine(config).compute_signal_grid([square_room], [center_ap])

    assert gpu_grid.values.shape == cpu_grid.values.shape
    assert gpu_grid.origin == cpu_grid.origin

    # Row and column 0 lie on the walls
    interior = (slice(1, None), slice(1, None))
    assert np.max(np.abs(gpu_grid.values[interior] - cpu_grid.values[interior])) <= 1.0


@pytest.mark.parametrize("layout", ["adjacent_rooms", "concrete_room"])
def test_agrees_with_cpu_through_walls(request, layout, gpu_engine, config, center_ap):
    """Walled layouts match the reference model and keep its ordering"""
    rooms = request.getfixturevalue(layout)
    rooms = rooms if isinstance(rooms, list) else [rooms]
    gpu_grid = gpu_engine.compute_signal_grid(rooms, [center_ap])
    cpu_grid = CPUPropagationEngine(config).compute_signal_grid(rooms, [center_ap])

    # Skip cells lying on a wall: row 0 and every column on x = 0 or x = 4
    off_wall = np.ones(cpu_grid.values.shape, dtype=bool)
    off_wall[0, :] = False
    off_wall[:, ::8] = False
    cpu = cpu_grid.values[off_wall]
    gpu = gpu_grid.values[off_wall]
    assert np.max(np.abs(gpu - cpu)) <= 1.0

    cpu_order = np.sign(cpu[:, None] - cpu[None, :])
    gpu_order = np.sign(gpu[:, None] - gpu[None, :])
    clear = np.abs(cpu[:, None] - cpu[None, :]) > 2.0
    assert np.all(cpu_order[clear] == gpu_order[clear])


def test_dispatch_failure_raises_unavailable(gpu_engine, square_room, center_ap, monkeypatch):
    def out_of_memory(*args, **kwargs):
        raise RuntimeError("CUDA out of memory")

    monkeypatch.setattr(gpu_engine, "_evaluate", out_of_memory)
    with pytest.raises(GPUUnavailableError):
        gpu_engine.compute_signal_grid([square_room], [center_ap])


def test_wall_crossings_reduce_signal(gpu_engine, config, adjacent_rooms, center_ap):
    grid = gpu_engine.compute_signal_grid(adjacent_rooms, [center_ap])
    assert grid.values.shape == (8, 16)

    # Cell (x=6, z=2) sits behind the shared wall, counted once per room
    distance = math.sqrt(4.0 ** 2 + 1.5 ** 2)
    expected = (
        reference_power_dbm(center_ap)
        - 10 * config.indoor_exponent * math.log10(distance)
        - 2 * (config.wall_attenuation_db + MaterialType.DRYWALL.attenuation_db)
    )
    assert grid.values[4, 12] == pytest.approx(expected, abs=0.01)


def test_best_transmitter_wins(gpu_engine, square_room):
    weak = Transmitter(position=(0.5, 2.5, 0.5), transmit_power_dbm=0.0)
    strong = Transmitter(position=(3.5, 2.5, 3.5), transmit_power_dbm=30.0)
    both = gpu_engine.compute_signal_grid([square_room], [weak, strong])
    strong_only = gpu_engine.compute_signal_grid([square_room], [strong])
    assert np.all(both.values >= strong_only.values - 1e-4)


def test_coverage_is_normalized(gpu_engine, adjacent_rooms, center_ap):
    coverage = gpu_engine.compute_coverage(adjacent_rooms, [center_ap])
    assert coverage.unit == "normalized"
    assert np.all((coverage.values >= 0.0) & (coverage.values <= 1.0))

    signal = gpu_engine.compute_signal_grid(adjacent_rooms, [center_ap])
    np.testing.assert_allclose(coverage.values, signal.normalized().values, atol=1e-5)


def test_tiled_dispatch_matches_single_batch(config, adjacent_rooms, center_ap):
    pytest.importorskip("torch")
    single = GPUPropagationEngine(config, device="cpu")
    tiled = GPUPropagationEngine(config.with_updates(gpu_max_batch_elements=1), device="cpu")

    np.testing.assert_allclose(
        tiled.compute_signal_grid(adjacent_rooms, [center_ap]).values,
        single.compute_signal_grid(adjacent_rooms, [center_ap]).values,
        atol=1e-5
    )


def test_empty_inputs_give_empty_grid(gpu_engine, square_room, center_ap):
    assert gpu_engine.compute_coverage([], [center_ap]).is_empty
    assert gpu_engine.compute_signal_grid([square_room], []).is_empty


def test_coverage_map_on_floor_plane(gpu_engine, square_room, center_ap):
    grid = gpu_engine.compute_coverage([square_room], [center_ap])
    coverage = gpu_engine.coverage_map(grid)
    assert len(coverage) == grid.values.size
    assert all(position[1] == 0.0 for position in coverage)
    assert coverage[(0.0, 0.0, 0.0)] == pytest.approx(grid.values[0, 0])
