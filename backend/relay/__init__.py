"""Real-time presence and notification relay."""
