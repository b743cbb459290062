"""Live HLS streaming with hot-swappable inputs driven by a supervised FFmpeg process."""

__version__ = "1.0.0"
