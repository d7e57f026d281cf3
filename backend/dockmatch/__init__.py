"""Dock list label matcher: reads shipping references off parcel labels and reconciles them with a dock list."""

__version__ = "1.0.0"
