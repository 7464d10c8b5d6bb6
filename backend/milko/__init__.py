"""Milko order pricing and fulfillment-state engine."""

__version__ = "1.0.0"
