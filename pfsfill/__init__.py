"""PFSFill - fills Personal Financial Statement PDF forms from financial data."""

__version__ = "1.0.0"
