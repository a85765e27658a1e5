# -*- coding: utf-8 -*-
from django.dispatch import Signal

# Signals emitted before and after validating a form.
pre_form_validate = Signal()
post_form_validate = Signal()

# Signal emitted while running cross-field validation. Receivers may raise a
# ValidationError keyed by field name to attach errors to those fields.
form_cross_validate = Signal()

# Signals emitted before and after persisting a form to its model instance.
pre_form_update = Signal()
post_form_update = Signal()
