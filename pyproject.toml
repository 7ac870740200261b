[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamcore"
version = "0.1.0"
description = "Building blocks of a feature-based visual SLAM system: ORB features, map points, a map container, a keyframe database, map drawing geometry and two-view triangulation."
requires-python = ">=3.10"
dependencies = ["numpy"]
keywords = ["slam", "orb", "computer-vision", "mapping", "features", "triangulation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Recognition",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["slamcore"]

[tool.pytest.ini_options]
addopts = "-ra"
