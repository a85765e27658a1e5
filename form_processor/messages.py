# -*- coding: utf-8 -*-

"""Message lookup for field validation errors."""

from typing import Any, Dict

from django.utils.translation import gettext
from django.utils.translation import gettext_lazy as _

from form_processor.conf import get_setting

##
# MESSAGES
#
# The built-in message catalog, keyed by a short message key. Any key that is
# not found here (or in the FORM_PROCESSOR_MESSAGES setting) is treated as a
# literal message.
#
MESSAGES: Dict[str, Any] = {
    "required": _("This field is required"),
    "multiple": _("This field does not take multiple values"),
    "invalid_option": _("'%s' is not a valid value"),
    "range_between": _("value must be between %s and %s"),
    "range_min": _("value must be greater than or equal to %s"),
    "range_max": _("value must be less than or equal to %s"),
    "numeric": _("value must be a number"),
    "unique": _("Value must be unique in the database"),
    "integer": _("Value must be an integer"),
    "positive_integer": _("Value must be a positive integer"),
    "money": _("Value must be a real number"),
    "email": _("Email should be of the format someuser@example.com"),
    "url": _("Enter a valid URL"),
    "date": _("Date must be in the format %s"),
    "invalid_date": _("Invalid date"),
    "max_length": _("Please limit to %s characters"),
    "min_length": _("Input must be at least %s characters"),
}


def resolve(key: str, *args: Any) -> str:
    """Resolve a message key to a localized message.

    Looks the key up in the FORM_PROCESSOR_MESSAGES setting, then in the
    built-in catalog, and otherwise uses the key itself as the message.

    Args:
        key: The message key (or a literal message).
        args: Positional values interpolated into the message.

    Returns:
        str: The translated, interpolated message.
    """
    overrides: Dict[str, str] = get_setting("MESSAGES", {})
    template = overrides.get(key) or MESSAGES.get(key) or key
    message = gettext(str(template))

    if args:
        message = message % args

    return message
