"""Discord interactions bot library: support tickets, canned replies and GitHub bug reports."""

__version__ = "1.0.0"