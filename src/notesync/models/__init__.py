"""Data models for the notesync engine."""
