"""Physics-based RF propagation simulation engine.

Implements the indoor propagation model used for coverage prediction:
- Free Space Path Loss (Friis equation)
- Distance-scaled indoor excess loss
- Multi-wall penetration with material-specific attenuation
- Floor crossings for transmitters on other storeys
- Best-server selection across access points
"""

import numpy as np
from typing import Dict, List, Tuple, Optional, Protocol, Sequence, Union
from dataclasses import dataclass, field
import logging
import math

from rfcoverage.core.exceptions import GPUUnavailableError
from rfcoverage.schemas.configuration import Configuration
from rfcoverage.schemas.enums import (
    FrequencyBand,
    MaterialType,
    SignalQuality,
    FAIR_SIGNAL_DBM,
    NO_SIGNAL_DBM,
)
from rfcoverage.schemas.floor_plan import Room
from rfcoverage.schemas.transmitter import Transmitter
from rfcoverage.services.geometry import (
    Bounds2D,
    Point3D,
    WallSegment,
    extract_walls,
    point_in_any_room,
    ray_intersects_wall,
    rooms_bounding_box,
)

logger = logging.getLogger(__name__)

# Friis constant for distance in meters and frequency in Hz: 20*log10(4π/c)
FSPL_CONSTANT_DB = -147.55

# Minimum separation used in log-distance terms
MIN_DISTANCE_M = 0.1

# Finest sampling step accepted; smaller or non-positive steps are raised to it
MIN_RESOLUTION_M = 1e-3

# Environment extent when no room geometry is configured
FALLBACK_BOUNDS: Bounds2D = ((-10.0, -10.0), (10.0, 10.0))


def calculate_fspl(distance_m: float, frequency_mhz: float) -> float:
    """
    Calculate Free Space Path Loss using the Friis equation.

    FSPL(dB) = 20*log10(d) + 20*log10(f) - 147.55   (d in m, f in Hz)

    Args:
        distance_m: Distance in meters
        frequency_mhz: Carrier frequency in MHz

    Returns:
        Path loss in dB
    """
    distance_m = max(distance_m, MIN_DISTANCE_M)
    frequency_hz = frequency_mhz * 1e6
    return 20 * math.log10(distance_m) + 20 * math.log10(frequency_hz) + FSPL_CONSTANT_DB


def calculate_indoor_path_loss(
    distance_m: float,
    frequency_mhz: float,
    num_walls: int,
    num_floors: int,
    config: Configuration
) -> float:
    """
    Indoor extension of FSPL.

    L = FSPL + Nw*Lw + Nf*Lf + 10*log10(d)*(n_indoor - n_free)

    Args:
        distance_m: Distance in meters
        frequency_mhz: Carrier frequency in MHz
        num_walls: Walls crossed by the direct path
        num_floors: Floors crossed by the direct path
        config: Exponents and per-obstacle losses

    Returns:
        Path loss in dB, excluding material-specific wall losses
    """
    distance_m = max(distance_m, MIN_DISTANCE_M)
    fspl = calculate_fspl(distance_m, frequency_mhz)

    wall_loss = num_walls * config.wall_attenuation_db
    floor_loss = num_floors * config.floor_attenuation_db
    indoor_factor = (
        10 * math.log10(distance_m) *
        (config.indoor_exponent - config.free_space_exponent)
    )

    return fspl + wall_loss + floor_loss + indoor_factor


def count_floors(height_difference_m: float, config: Configuration) -> int:
    """Whole storeys between two heights."""
    return int(abs(height_difference_m) / config.floor_height_m)


def signal_quality(signal_dbm: float) -> SignalQuality:
    """Classify signal strength: -30 / -50 / -70 / -85 dBm thresholds."""
    return SignalQuality.from_signal(signal_dbm)


def normalize_signal(signal_dbm: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
    """Map dBm onto [0, 1]: clamp((s + 100) / 100, 0, 1). NaN maps to 0."""
    values = np.nan_to_num(np.asarray(signal_dbm, dtype=np.float64), nan=NO_SIGNAL_DBM)
    normalized = np.clip((values + 100.0) / 100.0, 0.0, 1.0)
    if normalized.ndim == 0:
        return float(normalized)
    return normalized


@dataclass
class ObstacleCount:
    """Obstacles on the direct path between two points."""
    walls: int = 0
    floors: int = 0
    materials: List[MaterialType] = field(default_factory=list)
    material_loss_db: float = 0.0


@dataclass
class PropagationSample:
    """Predicted signal at one position."""
    position: Point3D
    signal_strength: float  # dBm
    path_loss: float        # dB
    quality: SignalQuality
    dominant_ap: Optional[Transmitter] = None

    def to_dict(self) -> dict:
        return {
            "x": self.position[0],
            "y": self.position[1],
            "z": self.position[2],
            "signal": self.signal_strength,
            "path_loss": self.path_loss,
            "quality": self.quality.value,
            "dominant_ap": self.dominant_ap.label if self.dominant_ap else None,
        }


@dataclass(frozen=True)
class GridSpec:
    """Regular lattice over the floor plane.

    Cell ``(ix, iz)`` sits at ``(origin_x + ix*res, sample_height, origin_z + iz*res)``.
    """
    origin_x: float
    origin_z: float
    resolution: float
    width: int
    height: int
    sample_height: float = 1.0

    def position(self, ix: int, iz: int) -> Point3D:
        return (
            self.origin_x + ix * self.resolution,
            self.sample_height,
            self.origin_z + iz * self.resolution,
        )

    @property
    def x_coords(self) -> np.ndarray:
        return self.origin_x + np.arange(self.width) * self.resolution

    @property
    def z_coords(self) -> np.ndarray:
        return self.origin_z + np.arange(self.height) * self.resolution


@dataclass
class HeatmapGrid:
    """Grid of signal values across the floor plan.

    Rows follow z, columns follow x.
    """
    values: np.ndarray
    origin: Tuple[float, float]  # (min_x, min_z)
    resolution: float            # Meters per grid cell
    sample_height: float = 1.0
    unit: str = "dbm"            # "dbm" or "normalized"

    @classmethod
    def empty(cls, unit: str = "dbm") -> "HeatmapGrid":
        return cls(values=np.zeros((0, 0)), origin=(0.0, 0.0), resolution=1.0, unit=unit)

    @property
    def width(self) -> int:
        return self.values.shape[1] if self.values.ndim == 2 else 0

    @property
    def height(self) -> int:
        return self.values.shape[0] if self.values.ndim == 2 else 0

    @property
    def is_empty(self) -> bool:
        return self.values.size == 0

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        """(min_x, max_x, min_z, max_z) covered by the cells."""
        min_x, min_z = self.origin
        return (
            min_x,
            min_x + self.width * self.resolution,
            min_z,
            min_z + self.height * self.resolution,
        )

    def cell_position(self, ix: int, iz: int) -> Point3D:
        return (
            self.origin[0] + ix * self.resolution,
            self.sample_height,
            self.origin[1] + iz * self.resolution,
        )

    def normalized(self) -> "HeatmapGrid":
        if self.unit == "normalized":
            return self
        return HeatmapGrid(
            values=normalize_signal(self.values) if not self.is_empty else self.values.copy(),
            origin=self.origin,
            resolution=self.resolution,
            sample_height=self.sample_height,
            unit="normalized",
        )

    def to_coverage_map(self, height: Optional[float] = None) -> Dict[Point3D, float]:
        """Position -> value mapping consumed by export and overlay layers."""
        coverage: Dict[Point3D, float] = {}
        for iz in range(self.height):
            for ix in range(self.width):
                x, y, z = self.cell_position(ix, iz)
                coverage[(x, y if height is None else height, z)] = float(self.values[iz, ix])
        return coverage


def grid_spec_for_rooms(
    rooms: Sequence[Room],
    resolution: float,
    sample_height: float = 1.0
) -> Optional[GridSpec]:
    """
    Lattice spanning the room vertices, shared by the CPU and GPU grid paths.

    Returns:
        GridSpec, or None when no room has usable geometry
    """
    bounds = rooms_bounding_box(rooms)
    if bounds is None:
        return None

    (min_x, min_z), (max_x, max_z) = bounds
    resolution = max(resolution, MIN_RESOLUTION_M)
    width = max(1, int(math.ceil((max_x - min_x) / resolution)))
    height = max(1, int(math.ceil((max_z - min_z) / resolution)))

    return GridSpec(
        origin_x=min_x,
        origin_z=min_z,
        resolution=resolution,
        width=width,
        height=height,
        sample_height=sample_height,
    )


class PropagationModel:
    """
    Indoor propagation model over a set of rooms and access points.

    Walls are derived from every room polygon edge. Each mutation bumps
    ``revision`` so that derived caches can tell their inputs changed.
    """

    def __init__(self, config: Optional[Configuration] = None):
        self._config = config or Configuration()
        self.rooms: List[Room] = []
        self.walls: List[WallSegment] = []
        self.access_points: List[Transmitter] = []
        self.revision = 0

        logger.info(
            f"PropagationModel initialized: band={self._config.frequency_band.value}, "
            f"n_indoor={self._config.indoor_exponent}"
        )

    # Configuration

    @property
    def config(self) -> Configuration:
        return self._config

    @config.setter
    def config(self, config: Configuration):
        self._config = config
        self.revision += 1

    @property
    def frequency_band(self) -> FrequencyBand:
        return self._config.frequency_band

    def set_frequency_band(self, band: FrequencyBand):
        self.config = self._config.with_updates(frequency_band=band)
        logger.info(f"Set frequency band to {band.value}")

    def configure_with_rooms(self, rooms: Sequence[Room]):
        self.rooms = list(rooms)
        self.walls = extract_walls(self.rooms)
        self.revision += 1
        logger.info(f"Configured with {len(self.rooms)} rooms and {len(self.walls)} walls")

    def add_access_point(
        self,
        position: Point3D,
        transmit_power_dbm: float = 20.0,
        name: str = "AP",
        antenna_gain_dbi: float = 2.15,
        band: Optional[FrequencyBand] = None
    ) -> Transmitter:
        ap = Transmitter(
            position=tuple(float(c) for c in position),
            transmit_power_dbm=transmit_power_dbm,
            antenna_gain_dbi=antenna_gain_dbi,
            band=band or self.frequency_band,
            name=name,
        )
        self.access_points.append(ap)
        self.revision += 1
        logger.debug(f"Added access point '{name}' at {ap.position}")
        return ap

    def set_access_points(self, access_points: Sequence[Transmitter]):
        self.access_points = list(access_points)
        self.revision += 1

    def clear_access_points(self):
        self.access_points = []
        self.revision += 1

    # Path loss

    def count_obstacles(self, source: Point3D, destination: Point3D) -> ObstacleCount:
        """Walls and floors crossed by the straight path source -> destination."""
        direction = (
            destination[0] - source[0],
            destination[1] - source[1],
            destination[2] - source[2],
        )
        distance = math.sqrt(direction[0] ** 2 + direction[1] ** 2 + direction[2] ** 2)

        obstacles = ObstacleCount(floors=count_floors(destination[1] - source[1], self._config))
        if distance == 0.0:
            return obstacles

        for wall in self.walls:
            if ray_intersects_wall(source, direction, wall, max_distance=distance):
                obstacles.walls += 1
                obstacles.materials.append(wall.material)
                obstacles.material_loss_db += wall.attenuation_db

        return obstacles

    def crossing_loss(self, wall: WallSegment) -> float:
        """Total loss one crossed wall adds to a path."""
        return self._config.wall_attenuation_db + wall.attenuation_db

    def calculate_path_loss(
        self,
        source: Point3D,
        destination: Point3D,
        band: Optional[FrequencyBand] = None
    ) -> float:
        """Indoor path loss plus material losses of every intersected wall."""
        distance = math.dist(source, destination)
        frequency_mhz = (band or self.frequency_band).frequency_mhz
        obstacles = self.count_obstacles(source, destination)

        path_loss = calculate_indoor_path_loss(
            distance,
            frequency_mhz,
            obstacles.walls,
            obstacles.floors,
            self._config
        )
        return path_loss + obstacles.material_loss_db

    def calculate_signal_strength(self, point: Point3D, ap: Transmitter) -> float:
        """Received power (dBm) at a point from one access point."""
        path_loss = self.calculate_path_loss(ap.position, point, ap.band)
        return ap.transmit_power_dbm + ap.antenna_gain_dbi - path_loss

    def best_server(
        self,
        point: Point3D,
        access_points: Optional[Sequence[Transmitter]] = None
    ) -> PropagationSample:
        """Strongest access point at a point; no dominant AP below the noise floor."""
        max_signal = NO_SIGNAL_DBM
        best_path_loss = 0.0
        dominant: Optional[Transmitter] = None

        for ap in (self.access_points if access_points is None else access_points):
            path_loss = self.calculate_path_loss(ap.position, point, ap.band)
            signal = ap.transmit_power_dbm + ap.antenna_gain_dbi - path_loss
            if signal > max_signal:
                max_signal = signal
                best_path_loss = path_loss
                dominant = ap

        return PropagationSample(
            position=point,
            signal_strength=max_signal,
            path_loss=best_path_loss,
            quality=signal_quality(max_signal),
            dominant_ap=dominant,
        )

    # Sampling

    def calculate_environment_bounds(self) -> Bounds2D:
        """Room vertex bounds padded by one sample step."""
        bounds = rooms_bounding_box(self.rooms)
        if bounds is None:
            return FALLBACK_BOUNDS

        pad = self._config.sample_resolution_m
        (min_x, min_z), (max_x, max_z) = bounds
        return (min_x - pad, min_z - pad), (max_x + pad, max_z + pad)

    def is_point_inside_rooms(self, point: Point3D) -> bool:
        return point_in_any_room((point[0], point[2]), self.rooms)

    def generate_grid_points(
        self,
        bounds: Bounds2D,
        resolution: float,
        height: Optional[float] = None
    ) -> List[Point3D]:
        """
        Lattice points inside at least one room.

        Points are ordered by x index, then z index.
        """
        resolution = max(resolution, MIN_RESOLUTION_M)
        height = self._config.sample_height_m if height is None else height
        (min_x, min_z), (max_x, max_z) = bounds
        x_steps = int((max_x - min_x) / resolution)
        z_steps = int((max_z - min_z) / resolution)

        points = []
        for ix in range(x_steps + 1):
            for iz in range(z_steps + 1):
                point = (min_x + ix * resolution, height, min_z + iz * resolution)
                if self.is_point_inside_rooms(point):
                    points.append(point)

        return points

    def generate_propagation_map(self, resolution: Optional[float] = None) -> List[PropagationSample]:
        """Best-server samples over the rooms at the sample height."""
        if not self.access_points:
            logger.warning("No access points configured")
            return []

        resolution = resolution or self._config.sample_resolution_m
        grid_points = self.generate_grid_points(self.calculate_environment_bounds(), resolution)

        logger.info(f"Generating propagation map with {len(grid_points)} points...")
        samples = [self.best_server(point) for point in grid_points]
        logger.info(f"Generated {len(samples)} propagation points")

        return samples

    def generate_3d_propagation_volume(
        self,
        resolution: float = 1.0,
        height_levels: int = 3
    ) -> List[PropagationSample]:
        """Samples on evenly spaced height slices from 1 m up to the ceiling."""
        if not self.access_points or height_levels <= 0:
            return []

        bounds = self.calculate_environment_bounds()
        if height_levels == 1:
            heights = [1.0]
        else:
            heights = np.linspace(1.0, self._config.ceiling_height_m, height_levels).tolist()

        samples: List[PropagationSample] = []
        for level_height in heights:
            for point in self.generate_grid_points(bounds, resolution, level_height):
                samples.append(self.best_server(point))

        logger.info(f"Generated 3D volume with {len(samples)} points across {height_levels} levels")
        return samples

    def signal_grid(self, spec: GridSpec) -> HeatmapGrid:
        """Best-server signal (dBm) on every lattice cell."""
        values = np.full((spec.height, spec.width), NO_SIGNAL_DBM)
        for iz in range(spec.height):
            for ix in range(spec.width):
                values[iz, ix] = self.best_server(spec.position(ix, iz)).signal_strength

        return HeatmapGrid(
            values=values,
            origin=(spec.origin_x, spec.origin_z),
            resolution=spec.resolution,
            sample_height=spec.sample_height,
        )

    # Optimization

    def find_optimal_ap_placements(self, max_aps: int = 3) -> List[Point3D]:
        """Greedy maximum-coverage placement; positions in selection order."""
        from rfcoverage.services.optimization import GreedyPlacementOptimizer

        recommendations = GreedyPlacementOptimizer(self).optimize(max_aps=max_aps)
        return [r.position for r in recommendations]


class PropagationEngine(Protocol):
    """Protocol for best-server grid engines."""

    def compute_signal_grid(
        self,
        rooms: Sequence[Room],
        transmitters: Sequence[Transmitter],
        resolution: Optional[float] = None
    ) -> HeatmapGrid:
        """Best-server signal strength (dBm) on the room lattice."""
        ...

    def compute_coverage(
        self,
        rooms: Sequence[Room],
        transmitters: Sequence[Transmitter],
        resolution: Optional[float] = None
    ) -> HeatmapGrid:
        """Normalized [0, 1] coverage on the room lattice."""
        ...


class CPUPropagationEngine:
    """Reference engine evaluating the full propagation model per cell."""

    def __init__(self, config: Optional[Configuration] = None):
        self.config = config or Configuration()

    def compute_signal_grid(
        self,
        rooms: Sequence[Room],
        transmitters: Sequence[Transmitter],
        resolution: Optional[float] = None
    ) -> HeatmapGrid:
        spec = grid_spec_for_rooms(
            rooms,
            resolution or self.config.sample_resolution_m,
            self.config.sample_height_m
        )
        if spec is None or not transmitters:
            return HeatmapGrid.empty()

        model = PropagationModel(self.config)
        model.configure_with_rooms(rooms)
        model.set_access_points(transmitters)
        return model.signal_grid(spec)

    def compute_coverage(
        self,
        rooms: Sequence[Room],
        transmitters: Sequence[Transmitter],
        resolution: Optional[float] = None
    ) -> HeatmapGrid:
        grid = self.compute_signal_grid(rooms, transmitters, resolution)
        if grid.is_empty:
            return HeatmapGrid.empty(unit="normalized")
        return grid.normalized()


def get_propagation_engine(
    config: Optional[Configuration] = None,
    prefer_gpu: Optional[bool] = None,
    device: Optional[str] = None
) -> PropagationEngine:
    """
    Factory function to get a propagation engine.

    Tries the accelerated engine first when preferred and falls back to
    the CPU reference engine when no compute device is usable.

    Args:
        config: Engine configuration
        prefer_gpu: Try the accelerated engine (defaults to settings.PREFER_GPU)
        device: Explicit compute device (defaults to settings.GPU_DEVICE)

    Returns:
        PropagationEngine instance
    """
    from rfcoverage.core.config import settings

    config = config or Configuration()
    if prefer_gpu is None:
        prefer_gpu = settings.PREFER_GPU

    if prefer_gpu:
        from rfcoverage.services.gpu_propagation import GPUPropagationEngine

        try:
            return GPUPropagationEngine(config, device=device or settings.GPU_DEVICE)
        except GPUUnavailableError as e:
            logger.warning(f"Accelerated propagation unavailable, using CPU engine: {e}")

    return CPUPropagationEngine(config)


def calculate_coverage_percentage(
    signal: Union[HeatmapGrid, np.ndarray, Sequence[float]],
    threshold_dbm: float = FAIR_SIGNAL_DBM
) -> float:
    """
    Calculate percentage of area with acceptable signal.

    Args:
        signal: Grid or array of signal strengths in dBm (NaN cells ignored)
        threshold_dbm: Minimum acceptable signal strength

    Returns:
        Percentage of covered area (0-100)
    """
    values = signal.values if isinstance(signal, HeatmapGrid) else np.asarray(signal, dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return 0.0

    covered_cells = np.sum(values >= threshold_dbm)
    return float(covered_cells / values.size * 100.0)


def calculate_signal_statistics(signal: Union[HeatmapGrid, np.ndarray, Sequence[float]]) -> dict:
    """Calculate various signal statistics for the grid."""
    values = signal.values if isinstance(signal, HeatmapGrid) else np.asarray(signal, dtype=float)

    # Filter out uninitialized values
    valid_signals = values[np.isfinite(values) & (values > NO_SIGNAL_DBM + 1)]

    if len(valid_signals) == 0:
        return {
            "mean": NO_SIGNAL_DBM,
            "median": NO_SIGNAL_DBM,
            "std": 0.0,
            "min": NO_SIGNAL_DBM,
            "max": NO_SIGNAL_DBM,
            "percentile_10": NO_SIGNAL_DBM,
            "percentile_90": NO_SIGNAL_DBM
        }

    return {
        "mean": float(np.mean(valid_signals)),
        "median": float(np.median(valid_signals)),
        "std": float(np.std(valid_signals)),
        "min": float(np.min(valid_signals)),
        "max": float(np.max(valid_signals)),
        "percentile_10": float(np.percentile(valid_signals, 10)),
        "percentile_90": float(np.percentile(valid_signals, 90))
    }
