# -*- coding: utf-8 -*-
from typing import Any, Optional, Type, cast

from django.core.exceptions import ImproperlyConfigured
from django.http import HttpRequest

from form_processor.binding import ModelForm
from form_processor.forms import Form


class FormProcessorMixin:
    """A mixin for class-based views that process forms.

    Builds the view's form_class (or a given form class), validates it
    against the POSTed parameters, and updates the bound record.

    Example:
        class BookEditView(FormProcessorMixin, View):
            form_class = BookForm

            def post(self, request, pk=None):
                if self.update_from_form(item_id=pk):
                    return redirect(...)
                return render(request, "edit.html", {"form": self.form})
    """

    request: HttpRequest

    ##
    # form_class
    #
    # The form built by get_form() when no other class is given.
    #
    form_class: Optional[Type[Form]] = None

    form: Optional[Form] = None

    def get_form(
        self,
        item: Any = None,
        item_id: Any = None,
        form_class: Optional[Type[Form]] = None,
        **kwargs: Any,
    ) -> Form:
        """Build a form and store it on the view as self.form.

        The current request is available to the form as user_data["request"].

        Args:
            item: The record to bind the form to.
            item_id: The id of the record to bind the form to.
            form_class: The form class. Defaults to self.form_class.
            kwargs: Passed to the form constructor.

        Returns:
            Form: The new form.
        """
        form_class = form_class or self.form_class
        if form_class is None:
            raise ImproperlyConfigured(
                f"{type(self).__name__} is missing a form_class."
            )

        user_data = {"request": self.request, **kwargs.pop("user_data", {})}
        self.form = form_class(item, item_id, user_data=user_data, **kwargs)
        return self.form

    def form_posted(self) -> bool:
        """Return True if the current request is a form submission."""
        return self.request.method == "POST"

    def validate_form(self, *args: Any, **kwargs: Any) -> bool:
        """Build a form and validate it if the form was posted.

        Args:
            args: Passed to get_form().
            kwargs: Passed to get_form().

        Returns:
            bool: True if the form was posted and is valid.
        """
        form = self.get_form(*args, **kwargs)
        return self.form_posted() and form.validate(self.request.POST)

    def update_from_form(self, *args: Any, **kwargs: Any) -> bool:
        """Build a form, then validate it and update its record if posted.

        Args:
            args: Passed to get_form().
            kwargs: Passed to get_form().

        Returns:
            bool: True if the form was posted, valid, and saved.
        """
        form = self.get_form(*args, **kwargs)
        if not isinstance(form, ModelForm):
            raise ImproperlyConfigured(
                f"{type(form).__name__} is not bound to a model and cannot be saved."
            )
        return self.form_posted() and cast(ModelForm, form).update_from_form(
            self.request.POST
        )
