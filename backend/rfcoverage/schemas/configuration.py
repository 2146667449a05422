"""Engine configuration snapshot.

A ``Configuration`` is immutable and hashable: it is consumed whole by
every generation call and doubles as the cache key of the heatmap
generator. Change values with ``config.with_updates(...)``, which
validates the result.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Tuple

from rfcoverage.schemas.enums import (
    ColorScheme,
    FrequencyBand,
    InterpolationMethod,
    RGBA,
)


class Configuration(BaseModel):
    """Numeric parameters of the propagation model and heatmap pipeline."""
    model_config = ConfigDict(frozen=True)

    # Path loss exponents
    free_space_exponent: float = Field(2.0, gt=0)
    indoor_exponent: float = Field(3.0, gt=0)
    obstructed_exponent: float = Field(4.0, gt=0)

    # Obstacle losses
    wall_attenuation_db: float = Field(5.0, ge=0, description="Generic loss per crossed wall")
    floor_attenuation_db: float = Field(15.0, ge=0, description="Loss per crossed floor")
    floor_height_m: float = Field(3.0, gt=0, description="Assumed storey height")

    # Band used for transmitters created by the model itself
    frequency_band: FrequencyBand = FrequencyBand.BAND_2_4GHZ

    # Sampling
    sample_resolution_m: float = Field(0.5, gt=0, description="Meters per propagation sample")
    meters_per_pixel: float = Field(0.05, gt=0, description="Image scale when no size is given")
    sample_height_m: float = Field(1.0, description="Height of single-floor maps")
    ceiling_height_m: float = Field(3.0, gt=0)
    mount_height_m: float = Field(2.5, gt=0, description="Height of placement candidates")

    # Heatmap pipeline
    interpolation_method: InterpolationMethod = InterpolationMethod.IDW
    color_scheme: ColorScheme = ColorScheme.TRADITIONAL
    custom_colors: Optional[Tuple[RGBA, ...]] = None
    smoothing_sigma: float = Field(2.0, ge=0)
    height_tolerance_m: float = Field(0.5, gt=0)
    draw_contours: bool = True
    contour_levels: Tuple[float, ...] = (-80.0, -70.0, -60.0, -50.0, -40.0)

    # Placement search
    coverage_grid_m: float = Field(1.0, gt=0)
    candidate_spacing_m: float = Field(2.0, gt=0)
    min_ap_separation_m: float = Field(3.0, ge=0)
    placement_tx_power_dbm: float = 20.0
    placement_antenna_gain_dbi: float = 2.15

    # Accelerated engine: upper bound of cells x transmitters x walls per batch
    gpu_max_batch_elements: int = Field(4_000_000, gt=0)

    def with_updates(self, **changes) -> "Configuration":
        """Copy with some fields replaced, validated like a new instance."""
        return Configuration.model_validate({**self.model_dump(), **changes})

    def palette(self) -> Tuple[RGBA, ...]:
        """Color control points for the selected scheme."""
        if self.color_scheme == ColorScheme.CUSTOM and self.custom_colors:
            return tuple(self.custom_colors)
        return tuple(self.color_scheme.colors)
