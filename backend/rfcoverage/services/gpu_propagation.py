"""
Accelerated best-server coverage on PyTorch.

Evaluates a simplified model for every grid cell in parallel:
log-distance loss with the indoor exponent plus the crossing loss of each
wall crossed by the 2D path. Each transmitter carries its own reference
power at 1 m (EIRP minus FSPL at 1 m), so unobstructed cells agree with the
CPU model and walls cost the same on both.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np

from rfcoverage.core.exceptions import GPUUnavailableError
from rfcoverage.schemas.configuration import Configuration
from rfcoverage.schemas.enums import NO_SIGNAL_DBM
from rfcoverage.schemas.floor_plan import Room
from rfcoverage.schemas.transmitter import Transmitter
from rfcoverage.services.geometry import PARALLEL_EPSILON, Point3D, extract_walls
from rfcoverage.services.rf_propagation import (
    MIN_DISTANCE_M,
    GridSpec,
    HeatmapGrid,
    calculate_fspl,
    grid_spec_for_rooms,
)

logger = logging.getLogger(__name__)

# Values per wall segment in the segment buffer: ax, az, bx, bz, crossing loss
SEGMENT_STRIDE = 5
# Values per transmitter: x, y, z, reference power at 1 m
TRANSMITTER_STRIDE = 4


def build_segment_buffer(rooms: Sequence[Room], config: Optional[Configuration] = None) -> np.ndarray:
    """
    Flatten every room wall into an ``(S, 5)`` float32 array.

    The last column is the loss a path takes when crossing the wall:
    the generic wall attenuation plus the wall material's attenuation.
    """
    config = config or Configuration()
    walls = extract_walls(rooms)
    buffer = np.zeros((len(walls), SEGMENT_STRIDE), dtype=np.float32)
    for i, wall in enumerate(walls):
        buffer[i] = (
            wall.start[0],
            wall.start[1],
            wall.end[0],
            wall.end[1],
            config.wall_attenuation_db + wall.attenuation_db,
        )
    return buffer


def reference_power_dbm(tx: Transmitter) -> float:
    """Power the accelerated model assigns to a transmitter at 1 m."""
    return tx.eirp_dbm - calculate_fspl(1.0, tx.band.frequency_mhz)


def build_transmitter_buffer(transmitters: Sequence[Transmitter]) -> np.ndarray:
    """Pack transmitters into an ``(T, 4)`` float32 array."""
    buffer = np.zeros((len(transmitters), TRANSMITTER_STRIDE), dtype=np.float32)
    for i, tx in enumerate(transmitters):
        buffer[i] = (tx.position[0], tx.position[1], tx.position[2], reference_power_dbm(tx))
    return buffer


class GPUPropagationEngine:
    """
    Coverage engine running one batched kernel per grid.

    Raises GPUUnavailableError at construction when no usable device exists.
    """

    def __init__(self, config: Optional[Configuration] = None, device: Optional[str] = None):
        self.config = config or Configuration()

        try:
            import torch
        except ImportError as e:
            raise GPUUnavailableError("PyTorch is not installed") from e

        self._torch = torch
        self.device = self._select_device(device)
        logger.info(f"GPU propagation engine using device {self.device}")

    def _select_device(self, device: Optional[str]):
        torch = self._torch

        if device:
            name = device
        elif torch.cuda.is_available():
            name = "cuda"
        elif torch.backends.mps.is_available():
            name = "mps"
        else:
            raise GPUUnavailableError("No CUDA or MPS device available")

        try:
            selected = torch.device(name)
            torch.zeros(1, device=selected)
        except (RuntimeError, AssertionError) as e:
            raise GPUUnavailableError(f"Device '{name}' is not usable: {e}") from e

        return selected

    def compute_signal_grid(
        self,
        rooms: Sequence[Room],
        transmitters: Sequence[Transmitter],
        resolution: Optional[float] = None
    ) -> HeatmapGrid:
        """Best-server signal strength (dBm), floored at -100."""
        return self._run(rooms, transmitters, resolution, normalize=False)

    def compute_coverage(
        self,
        rooms: Sequence[Room],
        transmitters: Sequence[Transmitter],
        resolution: Optional[float] = None
    ) -> HeatmapGrid:
        """Coverage normalized to [0, 1]."""
        return self._run(rooms, transmitters, resolution, normalize=True)

    def coverage_map(self, grid: HeatmapGrid) -> Dict[Point3D, float]:
        """Cell centers on the floor plane mapped to their values."""
        return grid.to_coverage_map(height=0.0)

    def _run(
        self,
        rooms: Sequence[Room],
        transmitters: Sequence[Transmitter],
        resolution: Optional[float],
        normalize: bool
    ) -> HeatmapGrid:
        unit = "normalized" if normalize else "dbm"
        spec = grid_spec_for_rooms(
            rooms,
            resolution or self.config.sample_resolution_m,
            self.config.sample_height_m
        )
        if spec is None or not transmitters:
            return HeatmapGrid.empty(unit=unit)

        segments = build_segment_buffer(rooms, self.config)
        tx_buffer = build_transmitter_buffer(transmitters)

        logger.info(
            f"Dispatching {spec.width}x{spec.height} grid with "
            f"{len(transmitters)} transmitters and {len(segments)} walls"
        )
        try:
            values = self._evaluate(spec, segments, tx_buffer, normalize)
        except RuntimeError as e:
            # Covers torch.OutOfMemoryError from buffer and tile allocation
            raise GPUUnavailableError(f"Dispatch on {self.device} failed: {e}") from e

        return HeatmapGrid(
            values=values,
            origin=(spec.origin_x, spec.origin_z),
            resolution=spec.resolution,
            sample_height=spec.sample_height,
            unit=unit,
        )

    def _rows_per_tile(self, spec: GridSpec, n_transmitters: int, n_segments: int) -> int:
        per_row = spec.width * n_transmitters * max(n_segments, 1)
        return max(1, min(spec.height, self.config.gpu_max_batch_elements // max(per_row, 1)))

    def _evaluate(
        self,
        spec: GridSpec,
        segments: np.ndarray,
        tx_buffer: np.ndarray,
        normalize: bool
    ) -> np.ndarray:
        torch = self._torch
        device = self.device

        seg = torch.from_numpy(segments).to(device)
        tx = torch.from_numpy(tx_buffer).to(device)
        xs = torch.from_numpy(spec.x_coords.astype(np.float32)).to(device)
        zs = torch.from_numpy(spec.z_coords.astype(np.float32)).to(device)

        exponent = float(self.config.indoor_exponent)
        rows_per_tile = self._rows_per_tile(spec, tx.shape[0], seg.shape[0])

        tiles: List[np.ndarray] = []
        with torch.no_grad():
            for row_start in range(0, spec.height, rows_per_tile):
                row_zs = zs[row_start:row_start + rows_per_tile]
                cz, cx = torch.meshgrid(row_zs, xs, indexing="ij")
                tile_shape = cx.shape
                cx = cx.reshape(-1, 1)
                cz = cz.reshape(-1, 1)

                # (cells, transmitters)
                dx = cx - tx[:, 0]
                dy = spec.sample_height - tx[:, 1]
                dz = cz - tx[:, 2]
                distance = torch.sqrt(dx * dx + dy * dy + dz * dz).clamp(min=MIN_DISTANCE_M)
                signal = tx[:, 3] - 10.0 * exponent * torch.log10(distance)

                if seg.shape[0] > 0:
                    signal = signal - self._crossing_loss(dx, dz, tx, seg)

                best = signal.max(dim=1).values.clamp(min=NO_SIGNAL_DBM)
                if normalize:
                    best = ((best + 100.0) / 100.0).clamp(0.0, 1.0)

                tiles.append(best.reshape(tile_shape).cpu().numpy())

        return np.concatenate(tiles, axis=0).astype(np.float64)

    def _crossing_loss(self, rx, rz, tx, seg):
        """Summed loss of walls crossed by each transmitter -> cell path, shape (cells, transmitters)."""
        torch = self._torch

        # (cells, transmitters, segments)
        rx = rx.unsqueeze(-1)
        rz = rz.unsqueeze(-1)
        sx = seg[:, 2] - seg[:, 0]
        sz = seg[:, 3] - seg[:, 1]
        qpx = seg[:, 0].unsqueeze(0) - tx[:, 0].unsqueeze(1)
        qpz = seg[:, 1].unsqueeze(0) - tx[:, 2].unsqueeze(1)

        denominator = rx * sz - rz * sx
        crosses = denominator.abs() >= PARALLEL_EPSILON
        safe = torch.where(crosses, denominator, torch.ones_like(denominator))

        t = (qpx * sz - qpz * sx) / safe
        u = (qpx * rz - qpz * rx) / safe
        crosses = crosses & (t >= 0) & (t <= 1) & (u >= 0) & (u <= 1)

        return (crosses.to(rx.dtype) * seg[:, 4]).sum(dim=-1)

