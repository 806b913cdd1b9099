"""Core models package."""
