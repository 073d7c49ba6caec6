"""Admin session authentication."""
