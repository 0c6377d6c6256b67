"""Services for Moodlog."""
