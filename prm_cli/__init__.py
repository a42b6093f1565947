"""Command line interface for the package repository manager."""
