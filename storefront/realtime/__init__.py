"""Change notification for live views."""
