# -*- coding: utf-8 -*-

"""Form processor.

Declarative form definitions that validate submitted parameters and
synchronize the validated values with Django model instances.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("django-form-processor")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
