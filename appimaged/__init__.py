"""Building blocks for registering AppImages and integrating them with the desktop."""

__version__ = "0.1.0"