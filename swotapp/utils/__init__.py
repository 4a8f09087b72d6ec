"""Utility helpers for the SWOT strategy match engine."""
