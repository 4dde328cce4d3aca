"""Route cost proxy: AMap directions with per-mode cost, emissions and calorie estimates."""

__version__ = "0.1.0"
