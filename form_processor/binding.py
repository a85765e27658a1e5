# -*- coding: utf-8 -*-

"""Forms bound to Django models."""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from django.core.exceptions import ImproperlyConfigured
from django.db import models
from django.db.models import Q
from django.forms.models import model_to_dict

from form_processor.conf import get_setting
from form_processor.db import ModelAccess, ModelType, RelationInfo
from form_processor.fields import Field, Option, as_list
from form_processor.forms import Form
from form_processor.signals import post_form_update, pre_form_update
from form_processor.utils import is_blank

logger = logging.getLogger(__name__)

##
# MODEL_FIELD_TYPES
#
# Maps Django model field classes to the field types guessed for them. More
# specific classes come before the classes they extend.
#
MODEL_FIELD_TYPES: Tuple[Tuple[Type[models.Field], str], ...] = (
    (models.BooleanField, "Boolean"),
    (models.PositiveIntegerField, "PosInteger"),
    (models.PositiveSmallIntegerField, "PosInteger"),
    (models.PositiveBigIntegerField, "PosInteger"),
    (models.IntegerField, "Integer"),
    (models.DecimalField, "Money"),
    (models.DateTimeField, "DateTimeDMYHM"),
    (models.DateField, "Date"),
    (models.EmailField, "Email"),
    (models.URLField, "URL"),
    (models.TextField, "TextArea"),
)


def _has_changed(current: Any, new: Any) -> bool:
    if not current and not new:
        return False
    return str(current) != str(new)


class ModelForm(Form):
    """A form that reads and writes a Django model instance.

    Fields named after columns of the model read and write those columns.
    Fields named after relationships read and write the ids of related
    records: choice fields get their options from the related model, and
    multi-valued fields are reconciled against the rows currently linked.
    """

    ##
    # model
    #
    # The model class (or "app_label.ModelName" string) of the bound record.
    #
    model: Optional[ModelType] = None

    ##
    # access_class
    #
    # The data access implementation.
    #
    access_class: Type[ModelAccess] = ModelAccess

    ##
    # active_column
    #
    # The column of related models that flags rows as selectable. Defaults
    # to the FORM_PROCESSOR_ACTIVE_COLUMN setting.
    #
    active_column: Optional[str] = None

    def __init__(
        self,
        item: Any = None,
        item_id: Any = None,
        *,
        model: Optional[ModelType] = None,
        access: Optional[ModelAccess] = None,
        **kwargs: Any,
    ) -> None:
        self.access = access or self.access_class()

        model = model or self.model
        if model is None:
            raise ImproperlyConfigured(
                f"{type(self).__name__} must define a model to bind to."
            )
        self.model = self.access.get_model(model)

        super().__init__(item, item_id, **kwargs)

    def build_form(self) -> None:
        super().build_form()
        self.check_relations()

    def check_relations(self) -> None:
        """Ensure that relationship-backed choice fields can be persisted.

        Raises:
            ImproperlyConfigured: If a relationship's metadata can't be
                determined, or doesn't match the field.
        """
        for field in self.fields:
            if not (field.has_options or field.multiple):
                continue
            if not self.access.schema_has_relationship(self.model, field.short_name):
                continue

            info = self.relation_info(field)
            if info["kind"] == "multi" and not field.multiple:
                raise ImproperlyConfigured(
                    f"Field [{field.name}] must take multiple values to hold the "
                    f"relationship '{info['accessor']}'."
                )
            if info["kind"] == "single" and (field.multiple or not info["join_column"]):
                raise ImproperlyConfigured(
                    f"Field [{field.name}] cannot hold the relationship "
                    f"'{info['accessor']}'."
                )

    def relation_info(self, field: Field) -> RelationInfo:
        return self.access.relationship_metadata(
            self.model, field.short_name, foreign_column=field.foreign_column
        )

    def many_to_many(self, name: str) -> RelationInfo:
        """Return the metadata of a multi-valued relationship of the model."""
        info = self.relation_info(self._field(name))
        if info["kind"] != "multi":
            raise ImproperlyConfigured(f"'{name}' is not a multi-valued relationship.")
        return info

    #
    # Initial values and options
    #

    def init_item(self) -> Optional[models.Model]:
        """Load the record identified by item_id.

        If there's no such record, the item_id is cleared and the form
        creates a new record on update.
        """
        item = self.access.find_by_id(self.model, self.item_id)
        if item is None:
            logger.debug(
                "No %s with id %r; the form will create a new record.",
                self.model.__name__,  # type: ignore
                self.item_id,
            )
            self.item_id = None
        return item

    def init_value(self, field: Field, item: Any) -> Any:
        """Return the initial value of a field from the bound record.

        Columns are read directly. Single-valued relationships give the
        related id (or the related record as a dict, for fields without
        options) and multi-valued relationships the list of linked ids.
        """
        name = field.short_name
        if isinstance(item, Mapping) or not isinstance(item, self.model):  # type: ignore
            return super().init_value(field, item)

        if not self.access.schema_has_relationship(self.model, name):
            return getattr(item, name, None)

        info = self.relation_info(field)
        if info["kind"] == "multi":
            return self.access.linked_ids(item, name, field.foreign_column)
        if field.has_options and info["join_column"]:
            return getattr(item, info["join_column"])

        related = self.access.related_record(item, name)
        if related is None:
            return None
        return related.pk if field.has_options else model_to_dict(related)

    def lookup_options(self, field: Field) -> Optional[List[Option]]:
        """Return the rows of the related model as options.

        Only active rows are offered, plus the rows currently selected,
        which are labeled in brackets if they're no longer active. Rows are
        sorted by the field's sort_order, defaulting to the label column.
        """
        name = field.short_name
        if not self.access.schema_has_relationship(self.model, name):
            return None

        foreign_model = self.relation_info(field)["foreign_model"]
        label_column = field.label_column or get_setting("LABEL_COLUMN", "name")
        if not self.access.schema_has_column(foreign_model, label_column):
            logger.warning(
                "Field [%s]: %s has no column '%s' to label options with.",
                field.name,
                foreign_model.__name__,
                label_column,
            )
            return None

        active_column = (
            field.active_column
            or self.active_column
            or get_setting("ACTIVE_COLUMN", "active")
        )
        has_active = self.access.schema_has_column(foreign_model, active_column)

        criteria = Q()
        if has_active:
            criteria = Q(**{active_column: True})
            selected = [v for v in as_list(field.init_value) if not is_blank(v)]
            if selected:
                criteria |= Q(pk__in=selected)

        rows = self.access.list_where(
            foreign_model, criteria, order_by=[field.sort_order or label_column]
        )

        options: List[Option] = []
        for row in rows:
            label = str(getattr(row, label_column))
            if has_active and not getattr(row, active_column):
                label = f"[ {label} ]"
            options.append({"value": row.pk, "label": label})
        return options

    def guess_field_type(self, name: str) -> str:
        """Guess the field type of a column or relationship of the model."""
        if self.access.schema_has_relationship(self.model, name):
            info = self.access.relationship_metadata(self.model, name)
            return "Multiple" if info["kind"] == "multi" else "Select"

        if name.endswith("_time"):
            return "DateTimeDMYHM"

        model_field = self.access.column_field(self.model, name)
        for field_class, type_name in MODEL_FIELD_TYPES:
            if isinstance(model_field, field_class):
                return type_name
        return "Text"

    #
    # Validation
    #

    def model_validate(self) -> None:
        self.validate_unique()

    def validate_unique(self) -> bool:
        """Ensure that unique fields don't match other records.

        Fields are unique if they're flagged unique or listed in the
        profile's "unique" entry. Blank fields and fields that already have
        errors are not checked.

        Returns:
            bool: True if no duplicates were found.
        """
        unique = self.profile.get("unique") or ()  # type: ignore
        messages: Dict[str, str] = {}
        default_message = None
        if isinstance(unique, Mapping):
            messages = dict(unique)
        else:
            default_message = "unique"

        names = list(unique)
        names.extend(
            field.short_name
            for field in self.fields
            if field.unique and field.short_name not in names
        )

        found_error = False
        for name in names:
            field = self._field(name)
            if field.has_errors() or is_blank(field.value):
                continue

            criteria = {name: field.value}
            count = self.access.count_where(self.model, criteria)
            if not count:
                continue
            if count == 1 and self.item_id is not None:
                match = self.access.list_where(self.model, criteria)[0]
                if str(match.pk) == str(self.item_id):
                    continue

            field.add_error(
                field.unique_message
                or default_message
                or messages.get(name)
                or "unique"
            )
            found_error = True

        return not found_error

    #
    # Persistence
    #

    def update_from_form(self, params: Optional[Mapping[str, Any]] = None) -> bool:
        """Validate the form and, if it's valid, update the record.

        Args:
            params: The submitted parameters.

        Returns:
            bool: True if the form was valid and the record was saved.
        """
        if not self.validate(params):
            return False
        self.update_record()
        return True

    def update_record(self) -> models.Model:
        """Write the validated values to the bound record.

        Creates the record if the form isn't bound to one. Changed columns
        are saved in a single update, and multi-valued relationships are
        reconciled against the rows currently linked.

        Returns:
            models.Model: The created or updated record.

        Raises:
            ImproperlyConfigured: If the form hasn't been validated, or
                failed validation.
        """
        if not self.validated:
            raise ImproperlyConfigured(
                f"Form {self.name} must pass validation before it can update "
                f"its record."
            )

        item = self.item
        access = self.access

        pre_form_update.send(sender=type(self), form=self, item=item)

        columns: Dict[str, Any] = {}
        selects: Dict[str, Tuple[RelationInfo, Any]] = {}
        multiples: Dict[str, Tuple[RelationInfo, Field]] = {}
        other: Dict[str, Any] = {}

        for field in self.fields:
            if field.noupdate:
                continue

            name = field.short_name
            if field.clear:
                value = None
            elif field.value is None:
                value = field.field_type.empty_value
            else:
                value = field.value

            if access.schema_has_relationship(self.model, name):
                info = self.relation_info(field)
                if info["kind"] == "multi" and field.multiple:
                    multiples[name] = (info, field)
                elif info["join_column"] and field.has_options:
                    selects[name] = (info, value)
                else:
                    logger.debug("Field [%s] does not update its relationship.", name)
            elif access.schema_has_column(self.model, name):
                columns[name] = value
            else:
                other[name] = value

        changes: Dict[str, Any] = {}
        if item is not None:
            for name, value in columns.items():
                if _has_changed(getattr(item, name), value):
                    changes[name] = value
            for info, value in selects.values():
                column = info["join_column"]
                if _has_changed(getattr(item, column), value):  # type: ignore
                    changes[column] = value  # type: ignore
            self.updated_or_created = "updated"
        else:
            values = dict(columns)
            for info, value in selects.values():
                values[info["join_column"]] = value  # type: ignore
            item = access.create(self.model, values)
            self.updated_or_created = "created"

        for name, value in other.items():
            if hasattr(item, name):
                changes[name] = value

        if changes:
            access.update(item, changes)

        for name, (info, field) in multiples.items():
            self.update_links(item, name, field)

        # Reload the values and options so they reflect the saved record.
        self.item = item
        self.item_id = item.pk
        self.init_object = None
        self.init_from_object()
        self.load_options()
        self.reset_params()

        logger.debug("%s %r from form %s", self.updated_or_created, item, self.name)
        post_form_update.send(sender=type(self), form=self, item=item)

        return item

    update_model = update_record

    def update_links(self, item: models.Model, name: str, field: Field) -> None:
        """Reconcile the rows linked to the record with a field's value.

        Links missing from the field's value are removed, and new ones
        added. Links in both are left alone.
        """
        targets: Dict[str, Any] = {}
        if not field.clear:
            for foreign_id in as_list(field.value):
                if not is_blank(foreign_id):
                    targets.setdefault(str(foreign_id), foreign_id)

        if self.updated_or_created == "updated":
            for linked_id in self.access.linked_ids(item, name, field.foreign_column):
                if targets.pop(str(linked_id), None) is None:
                    self.access.unlink_related(
                        item, name, linked_id, field.foreign_column
                    )

        for foreign_id in targets.values():
            self.access.link_related(item, name, foreign_id, field.foreign_column)
