"""Wardrobe Studio - photo quality gating and virtual try-on generation."""

__version__ = "0.1.0"
