"""Scheduled job that turns the shared venue spreadsheet into the published restaurants dataset."""

__version__ = "1.0.0"
