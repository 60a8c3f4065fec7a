"""Vinho Pipeline - wine label extraction, resolution and matching."""

__version__ = "0.1.0"
