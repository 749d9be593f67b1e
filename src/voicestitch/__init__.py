"""Chunked narration, subtitle editing and audio splicing."""

__version__ = "0.1.0"
