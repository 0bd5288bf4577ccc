"""
Core Infrastructure for voice-pipeline.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - errors.py: Error taxonomy and response envelope
    - models.py: Credit, usage and voice profile records
    - logging/: Structured logging with numeric levels
    - metrics.py: Prometheus metrics collection
"""
