"""Routing data storage backends."""
