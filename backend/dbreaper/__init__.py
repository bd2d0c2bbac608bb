"""DB Reaper: move expired rows into backup tables and dump them to files."""

__version__ = "1.0.0"
