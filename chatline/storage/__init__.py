"""Conversation persistence: record models and the SQLite store."""
