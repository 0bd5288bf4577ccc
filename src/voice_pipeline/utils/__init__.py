"""
Utility Modules for voice-pipeline.

This package provides common utility functions used across the codebase:
    - audio.py: Upload normalization and provider audio decoding
    - text.py: Pacing-tag preparation per provider
    - timing.py: Stage timing and request deadlines
"""
