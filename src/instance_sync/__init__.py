"""Poll remote instances, keep them in a local SQLite database, report changes."""

__version__ = "0.1.0"
