"""Salesight - CSV sales analytics over DuckDB."""

__version__ = "0.1.0"
