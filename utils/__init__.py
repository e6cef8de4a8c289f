"""
Utilities package for the Spotify terminal client.
Provides common utilities for logging.
"""
from .logger import setup_logger, ColoredFormatter, mask_secret

__all__ = [
    'setup_logger',
    'ColoredFormatter',
    'mask_secret'
]
