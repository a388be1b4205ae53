"""CAPA workflow engine: finding, root cause, action and evidence lifecycle rules."""

__version__ = "0.1.0"
