"""Step validation, fraud detection and phase-based reward engine."""

__version__ = "0.1.0"
