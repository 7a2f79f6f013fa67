"""Admission-time scheduling profile for virtual and normal nodes."""

__version__ = "0.1.0"
