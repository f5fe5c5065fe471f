"""Connectivity monitors and restored-edge detection."""
