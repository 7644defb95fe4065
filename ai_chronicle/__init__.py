"""AI Chronicle: interactive fiction driven by a hosted language model."""

__version__ = "1.0.0"
