"""ORB features, map points, map and keyframe database utilities for visual SLAM."""

__version__ = "0.1.0"