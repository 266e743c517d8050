"""fieldtrack – location resolution and field tracking for snow-removal crews."""

__version__ = "0.4.0"
