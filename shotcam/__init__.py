"""Calibration and frame-ingestion core for a camera-based shooting trainer."""

__version__ = "1.0.0"
