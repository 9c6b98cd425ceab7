"""chatvault - ChatGPT export archive to searchable SQLite."""

__version__ = "0.1.0"
