"""Batch ingestion of locally supplied audio clips into voice avatars."""

__version__ = "0.1.0"
