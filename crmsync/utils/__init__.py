# CRM Sync Utilities
"""
Shared utility functions for CRM sync services.
"""

from crmsync.utils.datetime_utils import make_aware, utc_now
from crmsync.utils.db_paths import get_crm_db_path, get_token_path

__all__ = ["make_aware", "utc_now", "get_crm_db_path", "get_token_path"]
