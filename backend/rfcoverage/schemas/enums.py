"""Enumerations and constant tables shared by the engine."""

from enum import Enum
from typing import Dict, List, Tuple


RGBA = Tuple[float, float, float, float]

# Signal quality thresholds (dBm)
EXCELLENT_SIGNAL_DBM = -30.0
GOOD_SIGNAL_DBM = -50.0
FAIR_SIGNAL_DBM = -70.0
POOR_SIGNAL_DBM = -85.0
NO_SIGNAL_DBM = -100.0

# Speed of light in m/s
SPEED_OF_LIGHT = 299792458.0


class MaterialType(str, Enum):
    """Building material crossed by a propagation path."""
    AIR = "air"
    DRYWALL = "drywall"
    CONCRETE = "concrete"
    GLASS = "glass"
    WOOD = "wood"
    METAL = "metal"
    FLOOR = "floor"
    DOOR = "door"

    @property
    def attenuation_db(self) -> float:
        return MATERIAL_ATTENUATION_DB[self]


# Penetration loss per crossing (dB)
MATERIAL_ATTENUATION_DB: Dict[MaterialType, float] = {
    MaterialType.AIR: 0.0,
    MaterialType.DRYWALL: 5.0,
    MaterialType.CONCRETE: 10.0,
    MaterialType.GLASS: 2.0,
    MaterialType.WOOD: 4.0,
    MaterialType.METAL: 20.0,
    MaterialType.FLOOR: 15.0,
    MaterialType.DOOR: 3.0,
}


class FrequencyBand(str, Enum):
    """WiFi frequency band."""
    BAND_2_4GHZ = "2.4GHz"
    BAND_5GHZ = "5GHz"
    BAND_6GHZ = "6GHz"

    @property
    def frequency_mhz(self) -> float:
        return BAND_CENTER_FREQUENCY_MHZ[self]

    @property
    def frequency_hz(self) -> float:
        return self.frequency_mhz * 1e6

    @property
    def wavelength_m(self) -> float:
        return SPEED_OF_LIGHT / self.frequency_hz


BAND_CENTER_FREQUENCY_MHZ: Dict[FrequencyBand, float] = {
    FrequencyBand.BAND_2_4GHZ: 2400.0,
    FrequencyBand.BAND_5GHZ: 5000.0,
    FrequencyBand.BAND_6GHZ: 6000.0,
}


class SignalQuality(str, Enum):
    """Coverage quality class of a received signal."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    NONE = "none"

    @property
    def color(self) -> RGBA:
        return QUALITY_COLORS[self]

    @classmethod
    def from_signal(cls, signal_dbm: float) -> "SignalQuality":
        """Classify a received signal strength."""
        if signal_dbm >= EXCELLENT_SIGNAL_DBM:
            return cls.EXCELLENT
        if signal_dbm >= GOOD_SIGNAL_DBM:
            return cls.GOOD
        if signal_dbm >= FAIR_SIGNAL_DBM:
            return cls.FAIR
        if signal_dbm >= POOR_SIGNAL_DBM:
            return cls.POOR
        # NaN lands here too
        return cls.NONE


QUALITY_COLORS: Dict[SignalQuality, RGBA] = {
    SignalQuality.EXCELLENT: (0.0, 1.0, 0.0, 0.8),  # Green
    SignalQuality.GOOD: (0.5, 1.0, 0.0, 0.7),       # Yellow-green
    SignalQuality.FAIR: (1.0, 1.0, 0.0, 0.6),       # Yellow
    SignalQuality.POOR: (1.0, 0.5, 0.0, 0.5),       # Orange
    SignalQuality.NONE: (1.0, 0.0, 0.0, 0.4),       # Red
}


class InterpolationMethod(str, Enum):
    """Gap filling algorithm for rasterized heatmaps.

    Bicubic, spline and kriging are approximations built from the
    inverse-distance and Gaussian smoothing passes, not true basis
    function or variogram fits.
    """
    NEAREST_NEIGHBOR = "nearest_neighbor"
    BILINEAR = "bilinear"
    BICUBIC = "bicubic"
    IDW = "idw"
    KRIGING = "kriging"
    SPLINE = "spline"


class ColorScheme(str, Enum):
    """Palette used to colorize signal strength."""
    TRADITIONAL = "traditional"
    THERMAL = "thermal"
    SPECTRUM = "spectrum"
    GRAYSCALE = "grayscale"
    CUSTOM = "custom"

    @property
    def colors(self) -> List[RGBA]:
        """Control points from weakest to strongest signal."""
        return list(COLOR_SCHEME_COLORS.get(self, COLOR_SCHEME_COLORS[ColorScheme.TRADITIONAL]))


COLOR_SCHEME_COLORS: Dict[ColorScheme, Tuple[RGBA, ...]] = {
    ColorScheme.TRADITIONAL: (
        (1.0, 0.0, 0.0, 1.0),   # Red (poor)
        (1.0, 0.5, 0.0, 1.0),   # Orange
        (1.0, 1.0, 0.0, 1.0),   # Yellow
        (0.5, 1.0, 0.0, 1.0),   # Yellow-green
        (0.0, 1.0, 0.0, 1.0),   # Green (excellent)
    ),
    ColorScheme.THERMAL: (
        (0.0, 0.0, 0.0, 1.0),   # Black
        (0.0, 0.0, 1.0, 1.0),   # Blue
        (0.0, 1.0, 1.0, 1.0),   # Cyan
        (0.0, 1.0, 0.0, 1.0),   # Green
        (1.0, 1.0, 0.0, 1.0),   # Yellow
        (1.0, 0.5, 0.0, 1.0),   # Orange
        (1.0, 0.0, 0.0, 1.0),   # Red
        (1.0, 1.0, 1.0, 1.0),   # White
    ),
    ColorScheme.SPECTRUM: (
        (0.5, 0.0, 1.0, 1.0),   # Purple
        (0.0, 0.0, 1.0, 1.0),   # Blue
        (0.0, 1.0, 1.0, 1.0),   # Cyan
        (0.0, 1.0, 0.0, 1.0),   # Green
        (1.0, 1.0, 0.0, 1.0),   # Yellow
        (1.0, 0.5, 0.0, 1.0),   # Orange
        (1.0, 0.0, 0.0, 1.0),   # Red
    ),
    ColorScheme.GRAYSCALE: (
        (0.0, 0.0, 0.0, 1.0),
        (0.25, 0.25, 0.25, 1.0),
        (0.5, 0.5, 0.5, 1.0),
        (0.75, 0.75, 0.75, 1.0),
        (1.0, 1.0, 1.0, 1.0),
    ),
}

# Contour overlay colors by dBm level
CONTOUR_COLORS: Dict[float, RGBA] = {
    -40.0: (0.0, 1.0, 0.0, 1.0),       # Green
    -50.0: (1.0, 1.0, 0.0, 1.0),       # Yellow
    -60.0: (1.0, 0.5, 0.0, 1.0),       # Orange
    -70.0: (1.0, 0.0, 0.0, 1.0),       # Red
    -80.0: (1.0 / 3, 1.0 / 3, 1.0 / 3, 1.0),  # Dark gray
}
DEFAULT_CONTOUR_COLOR: RGBA = (0.0, 0.0, 0.0, 1.0)
