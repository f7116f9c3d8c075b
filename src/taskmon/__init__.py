"""taskmon - a lightweight interactive process monitor."""

__version__ = "0.1.0"
