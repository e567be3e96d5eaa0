"""Notion-backed content platform: sync engine, local store, and REST API."""

__version__ = "0.4.0"
