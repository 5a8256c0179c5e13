"""Subprocess execution tools."""
