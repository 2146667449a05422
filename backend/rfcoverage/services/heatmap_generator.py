"""Heatmap visualization generator for signal coverage.

Turns scattered propagation samples into an RGBA raster:
rasterize -> interpolate gaps -> optional Gaussian smoothing -> colorize
-> contour overlay.
"""

import numpy as np
import cv2
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
from matplotlib.colors import LinearSegmentedColormap
from scipy import ndimage
from scipy.spatial import cKDTree
from typing import Dict, List, Optional, Sequence, Tuple, Union
import logging
import math
import os

from rfcoverage.schemas.configuration import Configuration
from rfcoverage.schemas.enums import (
    CONTOUR_COLORS,
    DEFAULT_CONTOUR_COLOR,
    EXCELLENT_SIGNAL_DBM,
    FAIR_SIGNAL_DBM,
    GOOD_SIGNAL_DBM,
    NO_SIGNAL_DBM,
    POOR_SIGNAL_DBM,
    RGBA,
    ColorScheme,
    InterpolationMethod,
    SignalQuality,
)
from rfcoverage.schemas.floor_plan import Room
from rfcoverage.schemas.transmitter import Transmitter
from rfcoverage.services.geometry import Point3D, polygon_area
from rfcoverage.services.rf_propagation import (
    HeatmapGrid,
    PropagationModel,
    PropagationSample,
    calculate_coverage_percentage,
    calculate_signal_statistics,
)

logger = logging.getLogger(__name__)

# Color mapping range (dBm)
COLOR_MIN_DBM = NO_SIGNAL_DBM
COLOR_MAX_DBM = EXCELLENT_SIGNAL_DBM

# Nearest-neighbor fill reach: half-width of the square search window, in cells
NEAREST_NEIGHBOR_RADIUS = 10
BILINEAR_NEIGHBORS = 4
IDW_POWER = 2.0
# Upper bound of unknown x known distance pairs evaluated at once
IDW_CHUNK_ELEMENTS = 4_000_000

# Smoothing passes emulating smoother interpolants: (passes, sigma)
BICUBIC_PASSES = (2, 1.5)
SPLINE_PASSES = (3, 2.0)

CONTOUR_ALPHA = 0.3

RESOLUTION_LIMITS_M = (0.1, 5.0)

# Accepted magnitude of normalized coverage values
MAX_COVERAGE_VALUE = 10.0

ImageSize = Tuple[int, int]  # (width, height) in pixels


def _pixels_for_span(span_m: float, meters_per_pixel: float) -> int:
    # Drop float noise before ceil
    return max(int(math.ceil(round(span_m / meters_per_pixel, 6))) + 1, 2)


def _rasterize_points(
    xs: np.ndarray,
    zs: np.ndarray,
    signals: np.ndarray,
    size: ImageSize,
    bounds: Tuple[float, float, float, float]
) -> Tuple[np.ndarray, np.ndarray]:
    width, height = size
    values = np.full((height, width), NO_SIGNAL_DBM, dtype=np.float64)
    known = np.zeros((height, width), dtype=bool)

    min_x, max_x, min_z, max_z = bounds
    x_range = max_x - min_x
    z_range = max_z - min_z

    for x, z, signal in zip(xs, zs, signals):
        col = int((x - min_x) / x_range * (width - 1)) if x_range > 0 else 0
        row = int((z - min_z) / z_range * (height - 1)) if z_range > 0 else 0
        if 0 <= col < width and 0 <= row < height:
            values[row, col] = signal
            known[row, col] = True

    return values, known


def rasterize_samples(
    samples: Sequence[PropagationSample],
    size: ImageSize,
    floor_height: float = 1.0,
    tolerance: float = 0.5
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Scatter samples near one height onto a pixel grid.

    The grid spans the horizontal bounds of all samples. Cells no sample
    lands on hold -100 dBm and are marked unknown.

    Args:
        samples: Propagation samples
        size: (width, height) of the grid
        floor_height: Height of the slice to draw
        tolerance: Samples closer than this to floor_height are kept

    Returns:
        (values, known) arrays of shape (height, width)
    """
    width, height = size
    if not samples or width <= 0 or height <= 0:
        return (
            np.full((max(height, 0), max(width, 0)), NO_SIGNAL_DBM),
            np.zeros((max(height, 0), max(width, 0)), dtype=bool),
        )

    xs = np.array([s.position[0] for s in samples])
    zs = np.array([s.position[2] for s in samples])
    bounds = (xs.min(), xs.max(), zs.min(), zs.max())

    slice_mask = np.array([abs(s.position[1] - floor_height) < tolerance for s in samples])
    signals = np.array([s.signal_strength for s in samples])

    return _rasterize_points(xs[slice_mask], zs[slice_mask], signals[slice_mask], size, bounds)


def _nearest_neighbor(values: np.ndarray, known: np.ndarray) -> np.ndarray:
    r, c = np.indices(values.shape)
    _, (rows, cols) = ndimage.distance_transform_edt(~known, return_indices=True)
    window, (win_rows, win_cols) = ndimage.distance_transform_cdt(
        ~known, metric="chessboard", return_indices=True
    )

    # Euclidean nearest when inside the window, otherwise the chessboard nearest
    outside = np.maximum(np.abs(rows - r), np.abs(cols - c)) > NEAREST_NEIGHBOR_RADIUS
    rows = np.where(outside, win_rows, rows)
    cols = np.where(outside, win_cols, cols)

    result = values.copy()
    fill = ~known & (window <= NEAREST_NEIGHBOR_RADIUS)
    result[fill] = values[rows[fill], cols[fill]]
    return result


def _bilinear(values: np.ndarray, known: np.ndarray) -> np.ndarray:
    known_rc = np.argwhere(known)
    unknown_rc = np.argwhere(~known)
    result = values.copy()
    if len(unknown_rc) == 0:
        return result

    k = min(BILINEAR_NEIGHBORS, len(known_rc))
    distances, indices = cKDTree(known_rc).query(unknown_rc, k=k)
    if k == 1:
        distances = distances[:, None]
        indices = indices[:, None]

    weights = 1.0 / distances
    neighbor_values = values[known_rc[indices, 0], known_rc[indices, 1]]
    result[~known] = (weights * neighbor_values).sum(axis=1) / weights.sum(axis=1)
    return result


def _idw(values: np.ndarray, known: np.ndarray) -> np.ndarray:
    known_rc = np.argwhere(known).astype(np.float64)
    known_values = values[known]
    unknown_rc = np.argwhere(~known)
    result = values.copy()

    chunk = max(1, IDW_CHUNK_ELEMENTS // len(known_rc))
    filled = np.empty(len(unknown_rc))
    for start in range(0, len(unknown_rc), chunk):
        block = unknown_rc[start:start + chunk].astype(np.float64)
        sq_dist = ((block[:, None, :] - known_rc[None, :, :]) ** 2).sum(axis=2)
        weights = 1.0 / sq_dist ** (IDW_POWER / 2.0)
        filled[start:start + chunk] = (weights @ known_values) / weights.sum(axis=1)

    result[~known] = filled
    return result


def _smoothed_preset(values: np.ndarray, known: np.ndarray, passes: int, sigma: float) -> np.ndarray:
    result = _bilinear(values, known)
    everywhere = np.ones_like(known)
    for _ in range(passes):
        result = gaussian_smooth(result, everywhere, sigma)
    # Known cells keep their sampled values; the passes only reshape the filled cells
    result[known] = values[known]
    return result


def interpolate_grid(
    values: np.ndarray,
    known: np.ndarray,
    method: InterpolationMethod = InterpolationMethod.IDW
) -> np.ndarray:
    """
    Fill unknown cells from known ones.

    Known cells keep their values. With no known cells the grid is
    returned unchanged.
    """
    if values.size == 0 or not known.any() or known.all():
        return values.copy()

    method = InterpolationMethod(method)
    if method == InterpolationMethod.NEAREST_NEIGHBOR:
        return _nearest_neighbor(values, known)
    if method == InterpolationMethod.BILINEAR:
        return _bilinear(values, known)
    if method == InterpolationMethod.BICUBIC:
        return _smoothed_preset(values, known, *BICUBIC_PASSES)
    if method == InterpolationMethod.SPLINE:
        return _smoothed_preset(values, known, *SPLINE_PASSES)
    # IDW and kriging
    return _idw(values, known)


def gaussian_kernel(sigma: float) -> np.ndarray:
    """Normalized square kernel of side ceil(3*sigma)*2 + 1."""
    size = int(math.ceil(sigma * 3)) * 2 + 1
    kernel_1d = cv2.getGaussianKernel(size, sigma, cv2.CV_64F)
    return kernel_1d @ kernel_1d.T


def gaussian_smooth(values: np.ndarray, known: np.ndarray, sigma: float) -> np.ndarray:
    """
    Masked Gaussian blur.

    Unknown neighbors are left out of each weighted average. A border
    band of half a kernel width keeps its input values.
    """
    kernel = gaussian_kernel(sigma)
    half = kernel.shape[0] // 2
    height, width = values.shape
    if height <= 2 * half or width <= 2 * half:
        return values.copy()

    mask = known.astype(np.float64)
    weighted = cv2.filter2D(values * mask, cv2.CV_64F, kernel, borderType=cv2.BORDER_CONSTANT)
    weight_sum = cv2.filter2D(mask, cv2.CV_64F, kernel, borderType=cv2.BORDER_CONSTANT)

    result = values.copy()
    inner = (slice(half, height - half), slice(half, width - half))
    has_weight = weight_sum[inner] > 1e-12
    result[inner] = np.where(
        has_weight,
        weighted[inner] / np.where(has_weight, weight_sum[inner], 1.0),
        values[inner]
    )
    return result


def colorize(values: np.ndarray, colors: Sequence[RGBA]) -> np.ndarray:
    """
    Map dBm values to RGBA pixels.

    [-100, -30] dBm is spread linearly over the color control points.

    Returns:
        uint8 array of shape (height, width, 4)
    """
    palette = np.asarray(colors, dtype=np.float64)
    if len(palette) == 0:
        raise ValueError("At least one color is required")

    signal = np.nan_to_num(values, nan=COLOR_MIN_DBM)
    normalized = np.clip((signal - COLOR_MIN_DBM) / (COLOR_MAX_DBM - COLOR_MIN_DBM), 0.0, 1.0)

    position = normalized * (len(palette) - 1)
    lower = np.floor(position).astype(int)
    upper = np.minimum(lower + 1, len(palette) - 1)
    fraction = (position - lower)[..., None]

    rgba = palette[lower] + (palette[upper] - palette[lower]) * fraction
    return np.clip(np.round(rgba * 255.0), 0, 255).astype(np.uint8)


def draw_contours(
    image: np.ndarray,
    values: np.ndarray,
    levels: Sequence[float],
    alpha: float = CONTOUR_ALPHA
) -> np.ndarray:
    """
    Blend iso-signal lines into an RGBA image.

    A cell at or above a level whose left or top neighbor is below it
    gets a line pixel in that level's color. The outermost rows and
    columns are never marked.
    """
    height, width = values.shape
    result = image.copy()
    if height < 3 or width < 3:
        return result

    center = values[1:-1, 1:-1]
    left = values[1:-1, :-2]
    top = values[:-2, 1:-1]

    for level in levels:
        edge = np.zeros((height, width), dtype=bool)
        edge[1:-1, 1:-1] = (center >= level) & ((left < level) | (top < level))
        if not edge.any():
            continue

        color = np.round(np.asarray(CONTOUR_COLORS.get(level, DEFAULT_CONTOUR_COLOR)) * 255)
        overlay = result.copy()
        overlay[edge] = color.astype(np.uint8)
        result = cv2.addWeighted(overlay, alpha, result, 1.0 - alpha, 0)

    return result


class HeatmapGenerator:
    """
    Renders propagation maps of a model to RGBA images.

    Samples and images are cached per configuration and model revision;
    any setter or model change invalidates them.
    """

    def __init__(self, model: PropagationModel, config: Optional[Configuration] = None):
        self.model = model
        self.config = config or model.config

        self._samples: Optional[List[PropagationSample]] = None
        self._samples_key = None
        self._images: Dict[tuple, Optional[np.ndarray]] = {}

    # Settings

    def _update(self, **changes):
        self.config = self.config.with_updates(**changes)
        self.invalidate()

    def set_color_scheme(self, scheme: ColorScheme):
        self._update(color_scheme=ColorScheme(scheme))

    def set_custom_colors(self, colors: Sequence[RGBA]):
        if len(colors) < 2:
            raise ValueError("A custom color scheme needs at least two colors")
        self._update(
            color_scheme=ColorScheme.CUSTOM,
            custom_colors=tuple(tuple(float(c) for c in color) for color in colors)
        )

    def set_interpolation_method(self, method: InterpolationMethod):
        self._update(interpolation_method=InterpolationMethod(method))

    def set_resolution(self, resolution_m: float):
        low, high = RESOLUTION_LIMITS_M
        self._update(sample_resolution_m=max(low, min(high, resolution_m)))

    def set_smoothing(self, sigma: float):
        self._update(smoothing_sigma=max(0.0, sigma))

    def invalidate(self):
        self._samples = None
        self._samples_key = None
        self._images.clear()

    # Generation

    def _cache_key(self) -> tuple:
        return (self.config, self.model.revision)

    def propagation_samples(self) -> List[PropagationSample]:
        key = self._cache_key()
        if self._samples is None or self._samples_key != key:
            self._samples = self.model.generate_propagation_map(
                resolution=self.config.sample_resolution_m
            )
            self._samples_key = key
            self._images.clear()
        return self._samples

    def default_size(self, samples: Sequence[PropagationSample]) -> ImageSize:
        """Image size from the sample extent at the configured meters per pixel."""
        xs = [s.position[0] for s in samples]
        zs = [s.position[2] for s in samples]
        mpp = self.config.meters_per_pixel
        return _pixels_for_span(max(xs) - min(xs), mpp), _pixels_for_span(max(zs) - min(zs), mpp)

    def render_values(self, values: np.ndarray, known: np.ndarray) -> np.ndarray:
        """Interpolate, smooth, colorize and overlay contours."""
        grid = interpolate_grid(values, known, self.config.interpolation_method)

        sigma = self.config.smoothing_sigma
        if sigma > 1.0:
            filled = known | (grid != NO_SIGNAL_DBM)
            grid = gaussian_smooth(grid, filled, sigma)

        image = colorize(grid, self.config.palette())
        if self.config.draw_contours:
            image = draw_contours(image, grid, self.config.contour_levels)
        return image

    def generate_heatmap_image(
        self,
        size: Optional[ImageSize] = None,
        floor_height: float = 1.0
    ) -> Optional[np.ndarray]:
        """
        Render the propagation map at one height.

        Args:
            size: (width, height) in pixels; derived from meters_per_pixel if None
            floor_height: Height of the slice to draw

        Returns:
            Read-only uint8 RGBA array of shape (height, width, 4), or None without data
        """
        samples = self.propagation_samples()
        if not samples:
            logger.warning("No propagation data available")
            return None

        size = tuple(size) if size else self.default_size(samples)
        image_key = self._cache_key() + (size, floor_height)
        if image_key in self._images:
            return self._images[image_key]

        values, known = rasterize_samples(
            samples, size, floor_height, self.config.height_tolerance_m
        )
        image = self.render_values(values, known)
        # Shared with later cache hits
        image.flags.writeable = False
        self._images[image_key] = image

        logger.info(f"Generated {size[0]}x{size[1]} heatmap from {len(samples)} samples")
        return image

    def generate_3d_heatmap_volume(self, height_levels: int = 5) -> List[float]:
        """Signal strengths of a volume sweep, in sample order."""
        volume = self.model.generate_3d_propagation_volume(
            resolution=self.config.sample_resolution_m,
            height_levels=height_levels
        )
        return [sample.signal_strength for sample in volume]

    def export_heatmap_data(self) -> dict:
        """Cached samples and generator settings as plain data."""
        if self._samples is None:
            return {}

        return {
            "points": [
                {
                    "x": s.position[0],
                    "y": s.position[1],
                    "z": s.position[2],
                    "signal": s.signal_strength,
                    "quality": s.quality.value,
                }
                for s in self._samples
            ],
            "metadata": {
                "resolution": self.config.sample_resolution_m,
                "interpolation": self.config.interpolation_method.value,
                "color_scheme": self.config.color_scheme.value,
            },
        }

    def render_coverage_map(
        self,
        coverage_map: Dict[Point3D, float],
        size: Optional[ImageSize] = None
    ) -> Optional[np.ndarray]:
        """
        Render a normalized position -> coverage mapping.

        Values that are not finite, negative or above 10 are dropped.
        """
        valid = {
            position: value
            for position, value in coverage_map.items()
            if math.isfinite(value) and 0.0 <= value <= MAX_COVERAGE_VALUE
        }
        skipped = len(coverage_map) - len(valid)
        if skipped:
            logger.warning(f"Skipped {skipped} invalid coverage values")
        if not valid:
            logger.warning("No valid coverage values to render")
            return None

        xs = np.array([p[0] for p in valid])
        zs = np.array([p[2] for p in valid])
        signals = np.array(list(valid.values())) * 100.0 + NO_SIGNAL_DBM

        if size is None:
            mpp = self.config.meters_per_pixel
            size = (
                _pixels_for_span(xs.max() - xs.min(), mpp),
                _pixels_for_span(zs.max() - zs.min(), mpp),
            )

        values, known = _rasterize_points(
            xs, zs, signals, tuple(size), (xs.min(), xs.max(), zs.min(), zs.max())
        )
        return self.render_values(values, known)


def save_heatmap_figure(
    grid: HeatmapGrid,
    output_path: str,
    transmitters: Optional[Sequence[Transmitter]] = None,
    colors: Optional[Sequence[RGBA]] = None,
    alpha: float = 0.85,
    dpi: int = 150
) -> str:
    """
    Save a heatmap figure of a signal grid.

    Args:
        grid: Signal grid (dBm or normalized)
        output_path: Where to save the image
        transmitters: Optional access points to mark
        colors: Color control points, weakest first
        alpha: Heatmap transparency (0-1)
        dpi: Output image DPI

    Returns:
        Path to generated image
    """
    directory = os.path.dirname(output_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    palette = [tuple(c[:3]) for c in (colors or ColorScheme.TRADITIONAL.colors)]
    colormap = LinearSegmentedColormap.from_list('signal_strength', palette)

    if grid.unit == "normalized":
        vmin, vmax, label = 0.0, 1.0, 'Coverage'
    else:
        vmin, vmax, label = COLOR_MIN_DBM, COLOR_MAX_DBM, 'Signal Strength (dBm)'

    fig, ax = plt.subplots(figsize=(8, 6))

    if not grid.is_empty:
        im = ax.imshow(
            grid.values,
            cmap=colormap,
            origin='lower',
            aspect='equal',
            vmin=vmin,
            vmax=vmax,
            alpha=alpha,
            extent=grid.extent
        )
        cbar = plt.colorbar(im, ax=ax, shrink=0.8, pad=0.02)
        cbar.set_label(label, rotation=270, labelpad=15)

    for i, tx in enumerate(transmitters or []):
        x, z = tx.position[0], tx.position[2]
        ax.plot(x, z, 'b^', markersize=12, markeredgecolor='white', markeredgewidth=2)
        ax.annotate(
            tx.name or f'AP{i+1}',
            (x, z),
            textcoords="offset points",
            xytext=(0, 10),
            ha='center',
            fontsize=9,
            fontweight='bold',
            color='blue'
        )

    ax.set_xlabel('X (m)')
    ax.set_ylabel('Z (m)')
    ax.set_title('WiFi Signal Coverage Heatmap')

    plt.tight_layout()
    plt.savefig(output_path, dpi=dpi, bbox_inches='tight', facecolor='white')
    plt.close(fig)

    return output_path


def generate_coverage_report(
    signal: Union[HeatmapGrid, np.ndarray],
    threshold_dbm: float = FAIR_SIGNAL_DBM,
    rooms: Optional[Sequence[Room]] = None
) -> dict:
    """
    Generate a coverage report with statistics.

    Args:
        signal: Signal grid; normalized grids are mapped back to dBm
        threshold_dbm: Minimum acceptable signal strength
        rooms: Optional rooms to report the floor area of

    Returns:
        Dictionary with coverage statistics
    """
    if isinstance(signal, HeatmapGrid):
        values = signal.values
        if signal.unit == "normalized":
            values = values * 100.0 + NO_SIGNAL_DBM
    else:
        values = np.asarray(signal, dtype=float)

    values = values[np.isfinite(values)]
    total_cells = values.size

    bands = [
        (SignalQuality.EXCELLENT, EXCELLENT_SIGNAL_DBM, np.inf),
        (SignalQuality.GOOD, GOOD_SIGNAL_DBM, EXCELLENT_SIGNAL_DBM),
        (SignalQuality.FAIR, FAIR_SIGNAL_DBM, GOOD_SIGNAL_DBM),
        (SignalQuality.POOR, POOR_SIGNAL_DBM, FAIR_SIGNAL_DBM),
        (SignalQuality.NONE, -np.inf, POOR_SIGNAL_DBM),
    ]

    breakdown = {}
    for quality, low, high in bands:
        cells = np.sum((values >= low) & (values < high))
        breakdown[quality.value] = {
            "cells": int(cells),
            "percentage": float(cells / total_cells * 100) if total_cells else 0.0,
        }

    report = {
        "total_area": int(total_cells),
        "coverage_breakdown": breakdown,
        "acceptable_coverage_percent": calculate_coverage_percentage(values, threshold_dbm),
        "signal_statistics": calculate_signal_statistics(values),
    }

    if rooms is not None:
        report["floor_area_m2"] = float(sum(polygon_area(room.polygon) for room in rooms))

    return report
