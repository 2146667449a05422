import itertools
import math

import pytest

from rfcoverage.schemas import Room
from rfcoverage.services.optimization import GreedyPlacementOptimizer
from rfcoverage.services.rf_propagation import PropagationModel


@pytest.fixture
def corridor_model(config):
    """30 x 2 m corridor"""
    model = PropagationModel(config)
    model.configure_with_rooms([Room(name="Corridor", polygon=[[0, 0], [30, 0], [30, 2], [0, 2]])])
    return model


def test_single_ap_covers_small_room(model):
    optimizer = GreedyPlacementOptimizer(model)
    assert len(optimizer.uncovered_points) == 16
    assert len(optimizer.candidates) == 4

    recommendations = optimizer.optimize(max_aps=3)
    assert len(recommendations) == 1

    first = recommendations[0]
    assert first.rank == 1
    # Ties go to the lowest lattice index
    assert first.position == (1.5, 2.5, 1.5)
    assert first.newly_covered == 16
    assert first.remaining_uncovered == 0


def test_placement_is_deterministic(corridor_model):
    first = GreedyPlacementOptimizer(corridor_model, threshold_dbm=-40.0).optimize(max_aps=4)
    second = GreedyPlacementOptimizer(corridor_model, threshold_dbm=-40.0).optimize(max_aps=4)
    assert [r.position for r in first] == [r.position for r in second]


def test_placements_respect_limits_and_separation(corridor_model, config):
    recommendations = GreedyPlacementOptimizer(corridor_model, threshold_dbm=-40.0).optimize(max_aps=4)
    assert 1 < len(recommendations) <= 4
    assert [r.rank for r in recommendations] == list(range(1, len(recommendations) + 1))

    for a, b in itertools.combinations(recommendations, 2):
        assert math.dist(a.position, b.position) >= config.min_ap_separation_m

    remaining = [r.remaining_uncovered for r in recommendations]
    assert remaining == sorted(remaining, reverse=True)


def test_progress_callback_called_per_placement(corridor_model):
    calls = []
    optimizer = GreedyPlacementOptimizer(corridor_model, threshold_dbm=-40.0)
    recommendations = optimizer.optimize(max_aps=2, progress_callback=lambda *args: calls.append(args))
    assert len(calls) == len(recommendations)
    assert calls[0][:2] == (1, 2)


def test_as_transmitters(model, config):
    optimizer = GreedyPlacementOptimizer(model)
    optimizer.optimize(max_aps=1)
    transmitters = optimizer.as_transmitters()
    assert len(transmitters) == 1
    assert transmitters[0].position == (1.5, 2.5, 1.5)
    assert transmitters[0].transmit_power_dbm == config.placement_tx_power_dbm
    assert transmitters[0].band == model.frequency_band


def test_no_aps_requested(model):
    assert GreedyPlacementOptimizer(model).optimize(max_aps=0) == []


def test_no_candidates(config):
    assert GreedyPlacementOptimizer(PropagationModel(config)).optimize(max_aps=3) == []


def test_model_delegates_placement(model):
    assert model.find_optimal_ap_placements(max_aps=2) == [(1.5, 2.5, 1.5)]
