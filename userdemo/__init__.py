"""A small HTTP service that stores users in a SQL database and lists them over JSON."""

__version__ = "0.1.0"