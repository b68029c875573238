"""Move managed resources between deployment states without touching the resources."""

__version__ = "0.1.0"
