"""Two-party chat backend with atomic message fan-out."""

__version__ = "0.1.0"
