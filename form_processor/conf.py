# -*- coding: utf-8 -*-
from typing import Any

from django.conf import settings

setting_prefix = "FORM_PROCESSOR"


def get_setting(name: str, default: Any = None) -> Any:
    """Return a form_processor setting from the Django settings module.

    Args:
        name: The name of the setting, without the FORM_PROCESSOR_ prefix.
        default: The value to return if the setting is not configured.

    Returns:
        Any: The configured value, or the default.
    """
    return getattr(settings, f"{setting_prefix}_{name}", default)
