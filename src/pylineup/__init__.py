"""Win-probability lineup optimizer for season-long fantasy rosters."""

__version__ = "0.1.0"
