"""Component update protocol: shared vocabulary and update client."""

__version__ = "0.1.0"
