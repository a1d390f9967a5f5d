[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lidarloc"
version = "0.1.0"
description = "LiDAR scan matching, incremental mapping and map-based localization with ICP registration"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "scipy",
]
keywords = ["lidar", "localization", "mapping", "icp", "point cloud", "pcd"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: GIS",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["lidarloc"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
