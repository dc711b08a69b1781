"""Shared building blocks used by every PALM Prep stage."""
