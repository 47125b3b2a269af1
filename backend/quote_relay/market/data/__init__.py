"""Packaged data files for the market subsystem."""
