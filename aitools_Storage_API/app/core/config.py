# config.py
# Description: Configuration settings for the aitools storage layer and its reference sync server.
#
# Imports
import configparser
import os
from pathlib import Path
from typing import Any, Dict, Optional
#
# 3rd-party Libraries
from loguru import logger
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Constants ---
DEFAULT_SYNC_API_KEY = "default-secret-key-for-single-user"
CONFIG_SECTION = "Storage"

# __file__ is .../aitools_Storage_API/app/core/config.py
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "Config_Files" / "config.txt"

# Maps config.txt keys in [Storage] to settings keys
_CONFIG_FILE_KEYS = {
    "log_level": "LOG_LEVEL",
    "local_store_db_path": "LOCAL_STORE_DB_PATH",
    "sync_server_db_path": "SYNC_SERVER_DB_PATH",
    "sync_api_key": "SYNC_API_KEY",
    "remote_timeout_seconds": "REMOTE_TIMEOUT_SECONDS",
    "archive_export_dir": "ARCHIVE_EXPORT_DIR",
}


def load_config_file(config_path: Optional[Path] = None) -> Optional[configparser.ConfigParser]:
    """Reads config.txt if present. A missing file is not an error; a broken one is logged and ignored."""
    config_path = Path(config_path or os.getenv("STORAGE_CONFIG_PATH", DEFAULT_CONFIG_PATH))
    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using environment and defaults")
        return None
    parser = configparser.ConfigParser()
    try:
        parser.read(config_path)
    except configparser.Error as e:
        logger.error(f"Error parsing config file {config_path}: {e}")
        return None
    logger.info(f"Loaded config file {config_path}. Sections: {parser.sections()}")
    return parser


def load_settings(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """Loads all settings from environment variables, config.txt or defaults into a dictionary."""
    config_dict: Dict[str, Any] = {
        # Logging
        "LOG_LEVEL": "INFO",
        # Local structured store used by the storage layer
        "LOCAL_STORE_DB_PATH": "./aitools_data/local_store.db",
        # Reference sync server
        "SYNC_SERVER_DB_PATH": "./aitools_data/sync_server.db",
        "SYNC_API_KEY": DEFAULT_SYNC_API_KEY,
        # Remote client
        "REMOTE_TIMEOUT_SECONDS": "30",
        # Backups
        "ARCHIVE_EXPORT_DIR": "./aitools_data/backups",
    }

    # config.txt overrides defaults, environment overrides both
    parser = load_config_file(config_path)
    if parser is not None and parser.has_section(CONFIG_SECTION):
        for file_key, settings_key in _CONFIG_FILE_KEYS.items():
            value = parser.get(CONFIG_SECTION, file_key, fallback=None)
            if value:
                config_dict[settings_key] = value

    for settings_key in _CONFIG_FILE_KEYS.values():
        env_value = os.getenv(settings_key)
        if env_value:
            config_dict[settings_key] = env_value

    config_dict["LOG_LEVEL"] = str(config_dict["LOG_LEVEL"]).upper()
    config_dict["LOCAL_STORE_DB_PATH"] = Path(config_dict["LOCAL_STORE_DB_PATH"])
    config_dict["SYNC_SERVER_DB_PATH"] = Path(config_dict["SYNC_SERVER_DB_PATH"])
    config_dict["ARCHIVE_EXPORT_DIR"] = Path(config_dict["ARCHIVE_EXPORT_DIR"])
    try:
        config_dict["REMOTE_TIMEOUT_SECONDS"] = float(config_dict["REMOTE_TIMEOUT_SECONDS"])
    except ValueError:
        logger.warning(f"Invalid REMOTE_TIMEOUT_SECONDS '{config_dict['REMOTE_TIMEOUT_SECONDS']}', using 30")
        config_dict["REMOTE_TIMEOUT_SECONDS"] = 30.0

    if config_dict["SYNC_API_KEY"] == DEFAULT_SYNC_API_KEY:
        logger.warning("Using default SYNC_API_KEY for the sync server. Set the SYNC_API_KEY environment variable.")

    return config_dict


settings = load_settings()

#
# End of config.py
########################################################################################################################
