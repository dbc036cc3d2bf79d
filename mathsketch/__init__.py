"""MathSketch: solve hand-drawn math with a vision model."""

__version__ = "1.0.0"
