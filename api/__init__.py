"""HTTP API for student interaction tracking and recommendations."""
