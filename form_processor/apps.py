# -*- coding: utf-8 -*-

"""Form processor.

A Django app to support profile-driven forms that validate submitted
parameters and persist them to model instances.
"""

from importlib import import_module

from django.apps import AppConfig

from form_processor.conf import get_setting


class FormProcessorConfig(AppConfig):
    """A Django app configuration for form_processor.

    Imports any additional field type modules so that their field types
    are registered before the first form is built.
    """

    name = "form_processor"
    verbose_name = "Form Processor"

    def ready(self) -> None:
        for module_path in get_setting("FIELD_MODULES", ()):
            import_module(module_path)
