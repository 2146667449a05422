"""Transmitter (access point) Pydantic schemas."""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Tuple

from rfcoverage.schemas.enums import FrequencyBand


class Transmitter(BaseModel):
    """WiFi access point.

    Position is ``(x, y, z)`` in meters with ``y`` pointing up.
    """
    model_config = ConfigDict(frozen=True)

    position: Tuple[float, float, float]
    transmit_power_dbm: float = Field(20.0, ge=-10, le=40)
    antenna_gain_dbi: float = Field(2.15, ge=-10, le=20)  # Standard dipole antenna
    band: FrequencyBand = FrequencyBand.BAND_2_4GHZ
    name: Optional[str] = None

    @property
    def eirp_dbm(self) -> float:
        return self.transmit_power_dbm + self.antenna_gain_dbi

    @property
    def label(self) -> str:
        return self.name or "AP"
