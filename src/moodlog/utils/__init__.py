"""Utility modules for Moodlog."""
