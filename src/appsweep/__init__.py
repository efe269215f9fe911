"""appsweep - find every file a macOS app leaves behind, and the ones nobody owns."""

__version__ = "0.1.0"
