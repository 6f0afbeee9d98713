"""Linear agent session controller — runs Claude on Linear agent sessions."""

__version__ = "0.1.0"
