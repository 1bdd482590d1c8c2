"""Tax lot reconciliation tool."""

__version__ = "0.1.0"
