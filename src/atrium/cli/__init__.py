"""Atrium command-line interface."""
