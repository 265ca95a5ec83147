"""Core routing logic."""
