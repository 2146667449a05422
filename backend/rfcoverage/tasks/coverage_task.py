"""Celery tasks for coverage prediction and AP placement."""

from typing import List, Optional
import logging
import os

from rfcoverage.tasks.celery_app import celery_app
from rfcoverage.core.config import settings, default_configuration, ensure_directories
from rfcoverage.core.exceptions import GPUUnavailableError
from rfcoverage.schemas.configuration import Configuration
from rfcoverage.schemas.floor_plan import Room
from rfcoverage.schemas.transmitter import Transmitter
from rfcoverage.services.heatmap_generator import generate_coverage_report, save_heatmap_figure
from rfcoverage.services.optimization import GreedyPlacementOptimizer
from rfcoverage.services.rf_propagation import CPUPropagationEngine, PropagationModel, get_propagation_engine

logger = logging.getLogger(__name__)


def _load_inputs(rooms: List[dict], config: Optional[dict]):
    configuration = Configuration(**config) if config else default_configuration()
    return [Room(**room) for room in rooms], configuration


@celery_app.task(bind=True, name='rfcoverage.tasks.coverage_task.generate_coverage')
def generate_coverage(
    self,
    rooms: List[dict],
    transmitters: List[dict],
    config: Optional[dict] = None,
    include_grid: bool = False,
    save_figure: bool = False
):
    """
    Background task predicting coverage for a floor plan.

    Args:
        rooms: Room payloads
        transmitters: Transmitter payloads
        config: Configuration overrides; environment defaults when omitted
        include_grid: Also compute the normalized coverage grid
        save_figure: Write a heatmap PNG under HEATMAP_PATH

    Returns:
        JSON-serializable samples, and the grid and report when requested
    """
    room_models, configuration = _load_inputs(rooms, config)
    tx_models = [Transmitter(**tx) for tx in transmitters]

    model = PropagationModel(configuration)
    model.configure_with_rooms(room_models)
    model.set_access_points(tx_models)

    samples = model.generate_propagation_map()
    result = {
        "status": "completed",
        "samples": [sample.to_dict() for sample in samples],
    }

    if include_grid or save_figure:
        engine = get_propagation_engine(configuration)
        try:
            signal_grid = engine.compute_signal_grid(room_models, tx_models)
        except GPUUnavailableError as e:
            logger.warning(f"Accelerated dispatch failed, rerunning on CPU engine: {e}")
            signal_grid = CPUPropagationEngine(configuration).compute_signal_grid(room_models, tx_models)
        coverage = signal_grid.normalized()

        if include_grid:
            result["grid"] = {
                "values": coverage.values.tolist(),
                "origin": list(coverage.origin),
                "resolution": coverage.resolution,
                "unit": coverage.unit,
            }
            result["report"] = generate_coverage_report(signal_grid, rooms=room_models)

        if save_figure and not signal_grid.is_empty:
            ensure_directories()
            filename = f"{self.request.id or 'coverage'}.png"
            path = os.path.join(settings.HEATMAP_PATH, filename)
            try:
                result["heatmap_path"] = save_heatmap_figure(
                    signal_grid, path, tx_models, configuration.palette()
                )
            except OSError as e:
                # Log but don't fail the prediction
                logger.warning(f"Heatmap generation failed: {e}")

    logger.info(f"Coverage task produced {len(samples)} samples")
    return result


@celery_app.task(bind=True, name='rfcoverage.tasks.coverage_task.recommend_placements')
def recommend_placements(
    self,
    rooms: List[dict],
    max_aps: int = 3,
    config: Optional[dict] = None
):
    """Background greedy AP placement with progress reporting."""
    room_models, configuration = _load_inputs(rooms, config)

    model = PropagationModel(configuration)
    model.configure_with_rooms(room_models)
    optimizer = GreedyPlacementOptimizer(model)

    def progress_callback(placed: int, total: int, newly_covered: int):
        if self.request.called_directly:
            return
        self.update_state(
            state='PROGRESS',
            meta={
                'percent': int(placed / total * 100),
                'placed': placed,
                'newly_covered': newly_covered
            }
        )

    recommendations = optimizer.optimize(max_aps=max_aps, progress_callback=progress_callback)

    return {
        "status": "completed",
        "placements": [r.to_dict() for r in recommendations],
        "transmitters": [tx.model_dump(mode="json") for tx in optimizer.as_transmitters()],
    }
