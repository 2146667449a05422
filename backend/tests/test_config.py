import logging

import pytest
from pydantic import ValidationError

from rfcoverage.core.config import Settings, configure_logging, default_configuration, settings
from rfcoverage.schemas import ColorScheme, Configuration, FrequencyBand, InterpolationMethod, MaterialType


def test_settings_read_environment(monkeypatch):
    monkeypatch.setenv("PREFER_GPU", "false")
    monkeypatch.setenv("DEFAULT_SAMPLE_RESOLUTION_M", "0.25")
    loaded = Settings()
    assert loaded.PREFER_GPU is False
    assert loaded.DEFAULT_SAMPLE_RESOLUTION_M == 0.25


def test_default_configuration_follows_settings(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_FREQUENCY_BAND", "5GHz")
    monkeypatch.setattr(settings, "DEFAULT_INTERPOLATION", "bilinear")
    monkeypatch.setattr(settings, "DEFAULT_COLOR_SCHEME", "thermal")

    config = default_configuration()
    assert config.frequency_band == FrequencyBand.BAND_5GHZ
    assert config.interpolation_method == InterpolationMethod.BILINEAR
    assert config.color_scheme == ColorScheme.THERMAL


def test_configure_logging_level(monkeypatch):
    calls = {}
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.update(kwargs))
    configure_logging("debug")
    assert calls["level"] == logging.DEBUG


def test_configuration_frozen_and_hashable():
    config = Configuration()
    assert hash(config) == hash(Configuration())
    assert config.with_updates(smoothing_sigma=1.0) != config
    with pytest.raises(ValidationError):
        config.smoothing_sigma = 3.0


def test_configuration_palette():
    assert Configuration().palette() == tuple(ColorScheme.TRADITIONAL.colors)
    custom = ((0.0, 0.0, 0.0, 1.0), (1.0, 1.0, 1.0, 1.0))
    assert Configuration(color_scheme=ColorScheme.CUSTOM, custom_colors=custom).palette() == custom
    # Custom scheme without colors falls back to the traditional palette
    assert Configuration(color_scheme=ColorScheme.CUSTOM).palette() == tuple(ColorScheme.TRADITIONAL.colors)


def test_band_and_material_tables():
    assert FrequencyBand.BAND_5GHZ.frequency_mhz == 5000.0
    assert FrequencyBand.BAND_2_4GHZ.wavelength_m == pytest.approx(0.1249, abs=1e-4)
    assert {m: m.attenuation_db for m in MaterialType} == {
        MaterialType.AIR: 0.0,
        MaterialType.DRYWALL: 5.0,
        MaterialType.CONCRETE: 10.0,
        MaterialType.GLASS: 2.0,
        MaterialType.WOOD: 4.0,
        MaterialType.METAL: 20.0,
        MaterialType.FLOOR: 15.0,
        MaterialType.DOOR: 3.0,
    }


def test_transmitter_power_bounds():
    from rfcoverage.schemas import Transmitter

    with pytest.raises(ValidationError):
        Transmitter(position=(0, 0, 0), transmit_power_dbm=50.0)
