"""
Database and token path utilities for CRM sync services.
"""
from pathlib import Path
from typing import Optional

from config.settings import Settings, settings as default_settings


def get_crm_db_path(settings: Optional[Settings] = None) -> str:
    """
    Get the path to the CRM database.

    Creates the parent directory if it doesn't exist.

    Returns:
        Absolute path to the crm.db file
    """
    cfg = settings or default_settings
    db_path = Path(cfg.db_path_resolved)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return str(db_path.resolve())


def get_token_path(settings: Optional[Settings] = None) -> Path:
    """Get the path of the stored Google OAuth token."""
    cfg = settings or default_settings
    return Path(cfg.token_path_resolved)
