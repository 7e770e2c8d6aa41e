"""Document question answering over a retrieval pipeline."""

__version__ = "0.1.0"
