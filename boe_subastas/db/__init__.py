"""SQLite persistence and run tracking."""
