"""Indoor WiFi RF propagation and heatmap engine."""

__version__ = "1.0.0"
