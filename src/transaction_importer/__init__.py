"""Statement import pipeline: delimited bank exports to categorized transactions."""

__version__ = "0.1.0"
