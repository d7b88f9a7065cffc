"""Validation, repair and retry pipeline for generated course content."""
