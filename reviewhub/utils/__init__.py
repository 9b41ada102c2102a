"""
Utility modules for reviewhub.
"""

from .config import AppConfig, load_config, get_config

__all__ = ["AppConfig", "load_config", "get_config"]
