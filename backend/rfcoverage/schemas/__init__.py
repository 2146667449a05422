# Pydantic schemas
from rfcoverage.schemas.enums import (
    MaterialType, FrequencyBand, SignalQuality, InterpolationMethod, ColorScheme
)
from rfcoverage.schemas.floor_plan import Room
from rfcoverage.schemas.transmitter import Transmitter
from rfcoverage.schemas.configuration import Configuration
