"""Data models for Moodlog."""
