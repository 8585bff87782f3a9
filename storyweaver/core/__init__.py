"""
Storyweaver Core Module

Configuration, constants, exceptions, retry and logging.
"""

from .config import StoryweaverConfig, load_config, save_config
from .constants import *
from .exceptions import *
from .logging_config import setup_logging, get_logger
from .retry import RetryConfig, calculate_delay, retry_on_rate_limit

__all__ = [
    'StoryweaverConfig',
    'load_config',
    'save_config',
    'setup_logging',
    'get_logger',
    'RetryConfig',
    'calculate_delay',
    'retry_on_rate_limit',
]
