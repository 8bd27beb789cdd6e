"""Local-disk media store with an unreferenced-file cleaner."""

__version__ = "0.1.0"
