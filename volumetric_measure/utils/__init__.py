"""
Utilities Module

Configuration management, logging setup and shared geometry helpers.
"""

from .config_manager import ConfigManager
from .logging_config import setup_logging, PerformanceTimer

__all__ = ['ConfigManager', 'setup_logging', 'PerformanceTimer']
