"""
Error Types
===========

Exceptions raised across the pipeline.

    - ConfigurationError: bad input or settings, aborts the run
    - ModelingError: failure inside one response variable's iteration
"""

from typing import Optional


class MultiResponseError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(MultiResponseError):
    """Invalid configuration or input layout. Never isolated per response."""


class ModelingError(MultiResponseError):
    """
    A recoverable error raised while fitting a single response variable.

    Args:
        message: Human readable description
        stage: Loop step that failed (e.g. 'recipe', 'tune')
    """

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage
