"""HTTP API for Moodlog."""
