"""Mapping of modification sites onto reference protein sequences."""
