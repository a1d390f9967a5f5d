"""LiDAR pose arithmetic, point clouds, ICP registration, mapping, localization and monitoring."""

__version__ = "0.1.0"