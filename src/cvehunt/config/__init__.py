"""
Configuration management for cvehunt.

Supports multiple configuration sources in order of priority:
1. Environment variables (highest priority)
2. Project .env file (.cvehunt/.env)
3. Global config file (~/.cvehunt/config.yml)
4. Default values (lowest priority)
"""

from .env_loader import (
    get_project_env_path,
    global_config_dir,
    load_env_file,
    load_global_config,
    load_project_config,
)
from .getters import (
    get_api_key,
    get_bool,
    get_config,
    get_float,
    get_int,
    get_list,
    is_verbose,
)
from .settings import DiscoverySettings, load_reliability_weights

__all__ = [
    # env_loader
    "get_project_env_path",
    "global_config_dir",
    "load_env_file",
    "load_global_config",
    "load_project_config",
    # getters
    "get_api_key",
    "get_bool",
    "get_config",
    "get_float",
    "get_int",
    "get_list",
    "is_verbose",
    # settings
    "DiscoverySettings",
    "load_reliability_weights",
]
