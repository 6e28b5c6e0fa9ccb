"""
Access config: typed wrappers over subgate.core.config.settings.
"""
from __future__ import annotations

from subgate.core.config import settings


def get_login_path() -> str:
    return settings.login_path


def get_viewer_id_header() -> str:
    return settings.viewer_id_header
