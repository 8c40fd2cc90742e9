"""Persistence layer for StudyTrack."""
