"""Moodlog - streaming AI analysis for a daily journal."""

__version__ = "0.1.0"
