"""Content Relay - milter bridge between an MTA and a content-analysis engine."""

__version__ = "0.1.0"
