# -*- coding: utf-8 -*-

"""Data access for forms bound to Django models."""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type, Union, cast

from django.apps import apps
from django.core.exceptions import (
    FieldDoesNotExist,
    ImproperlyConfigured,
    ObjectDoesNotExist,
    ValidationError,
)
from django.db import models
from django.db.models import Q
from typing_extensions import Literal, TypedDict

logger = logging.getLogger(__name__)

ModelType = Union[str, Type[models.Model]]

RelationStyle = Literal[
    "foreign_key",
    "reverse_one_to_one",
    "many_to_many",
    "mapping",
    "reverse_foreign_key",
]


class RelationInfo(TypedDict):
    """What a form needs to know to read and write a relationship.

    Attributes:
        kind: "single" or "multi".
        style: How the relationship is stored.
        accessor: The attribute of the record that holds the relationship.
        join_column: The column of the record that holds the related id, for
            foreign keys.
        foreign_model: The model of the related rows offered as options.
        foreign_column: The column holding the related id: the target column
            of a foreign key, or the foreign key column of a mapping model.
        mapping_model: The model whose rows link the record to related rows,
            for mapping tables and direct has-many relationships.
        self_column: The column of the mapping model that points back to the
            record.
    """

    kind: Literal["single", "multi"]
    style: RelationStyle
    accessor: str
    join_column: Optional[str]
    foreign_model: Type[models.Model]
    foreign_column: Optional[str]
    mapping_model: Optional[Type[models.Model]]
    self_column: Optional[str]


class ModelAccess:
    """Reads and writes records through the Django ORM.

    Models may be given as model classes or as "app_label.ModelName"
    strings.
    """

    def get_model(self, model: ModelType) -> Type[models.Model]:
        if isinstance(model, str):
            try:
                return apps.get_model(model)
            except (LookupError, ValueError) as ex:
                raise ImproperlyConfigured(f"Unknown model '{model}': {ex}") from ex
        return model

    #
    # Records
    #

    def find_by_id(self, model: ModelType, pk: Any) -> Optional[models.Model]:
        """Return the record with the given primary key, or None.

        Keys that can't be converted to the model's primary key type match
        no record.
        """
        model = self.get_model(model)
        try:
            pk = model._meta.pk.to_python(pk)
        except ValidationError:
            return None
        return model._default_manager.filter(pk=pk).first()

    def _queryset(
        self, model: ModelType, criteria: Union[Q, Mapping[str, Any], None]
    ) -> models.QuerySet:
        queryset = self.get_model(model)._default_manager.all()
        if isinstance(criteria, Q):
            return queryset.filter(criteria)
        return queryset.filter(**(criteria or {}))

    def list_where(
        self,
        model: ModelType,
        criteria: Union[Q, Mapping[str, Any], None] = None,
        order_by: Optional[Sequence[str]] = None,
    ) -> List[models.Model]:
        queryset = self._queryset(model, criteria)
        if order_by:
            queryset = queryset.order_by(*order_by)
        return list(queryset)

    def count_where(
        self, model: ModelType, criteria: Union[Q, Mapping[str, Any], None] = None
    ) -> int:
        return self._queryset(model, criteria).count()

    def create(self, model: ModelType, values: Mapping[str, Any]) -> models.Model:
        model = self.get_model(model)
        return model._default_manager.create(**self._prepare(model, values))

    def update(self, record: models.Model, values: Mapping[str, Any]) -> None:
        """Set the given attributes of a record and save it."""
        for name, value in self._prepare(type(record), values).items():
            setattr(record, name, value)
        record.save()

    def _prepare(
        self, model: Type[models.Model], values: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Convert form values to the Python types of their columns.

        None becomes an empty string for columns that store empty strings
        instead of NULL.
        """
        prepared = {}
        for name, value in values.items():
            field = self.column_field(model, name)
            if field is not None:
                if value is None:
                    if not field.null and field.empty_strings_allowed:
                        value = ""
                else:
                    value = field.to_python(value)
            prepared[name] = value
        return prepared

    #
    # Schema
    #

    def column_field(self, model: ModelType, name: str) -> Optional[models.Field]:
        """Return the model field storing a plain column, if there is one.

        The id column of a foreign key counts as a plain column.
        """
        for field in self.get_model(model)._meta.concrete_fields:
            if field.is_relation:
                if field.attname == name:
                    return field
            elif name in (field.name, field.attname):
                return field
        return None

    def schema_has_column(self, model: ModelType, name: str) -> bool:
        return self.column_field(model, name) is not None

    def _relation_field(self, model: ModelType, name: str) -> Any:
        model = self.get_model(model)
        try:
            field = model._meta.get_field(name)
        except FieldDoesNotExist:
            # Reverse relations may be named by their accessor, e.g. "book_set".
            for field in model._meta.get_fields():
                if field.auto_created and not field.concrete and field.is_relation:
                    if field.get_accessor_name() == name:
                        return field
            return None

        if not field.is_relation or field.related_model is None:
            return None
        # The id column of a foreign key is a plain column.
        if field.name != name:
            return None
        return field

    def schema_has_relationship(self, model: ModelType, name: str) -> bool:
        return self._relation_field(model, name) is not None

    def relationship_metadata(
        self, model: ModelType, name: str, foreign_column: Optional[str] = None
    ) -> RelationInfo:
        """Describe how a relationship of a model is stored.

        A reverse foreign key from a model that has exactly one other foreign
        key is treated as a mapping table to the model of that other key.
        Without other foreign keys, the related rows are linked directly by
        setting their foreign key, which must be nullable. With several
        other foreign keys, foreign_column must name the one to use, or the
        primary key of the related model to link its rows directly.

        Args:
            model: The model of the record.
            name: The name of the relationship.
            foreign_column: The foreign key of a mapping model that points to
                the related rows.

        Returns:
            RelationInfo: The relationship metadata.

        Raises:
            ImproperlyConfigured: If there's no such relationship, or if the
                metadata can't be determined.
        """
        field = self._relation_field(model, name)
        if field is None:
            raise ImproperlyConfigured(
                f"{self.get_model(model).__name__} has no relationship named '{name}'."
            )

        if field.concrete and (field.many_to_one or field.one_to_one):
            return RelationInfo(
                kind="single",
                style="foreign_key",
                accessor=field.name,
                join_column=field.attname,
                foreign_model=field.related_model,
                foreign_column=field.target_field.attname,
                mapping_model=None,
                self_column=None,
            )

        accessor = field.name if field.concrete else field.get_accessor_name()

        if field.one_to_one:
            return RelationInfo(
                kind="single",
                style="reverse_one_to_one",
                accessor=accessor,
                join_column=None,
                foreign_model=field.related_model,
                foreign_column=field.related_model._meta.pk.attname,
                mapping_model=None,
                self_column=field.field.attname,
            )

        if field.many_to_many:
            return RelationInfo(
                kind="multi",
                style="many_to_many",
                accessor=accessor,
                join_column=None,
                foreign_model=field.related_model,
                foreign_column=field.related_model._meta.pk.attname,
                mapping_model=None,
                self_column=None,
            )

        if field.one_to_many:
            return self._reverse_foreign_key_metadata(field, accessor, foreign_column)

        raise ImproperlyConfigured(
            f"Unsupported relationship '{name}' of {self.get_model(model).__name__}."
        )

    def _reverse_foreign_key_metadata(
        self, field: Any, accessor: str, foreign_column: Optional[str]
    ) -> RelationInfo:
        child = field.related_model
        self_fk = field.field
        other_fks = [
            f
            for f in child._meta.concrete_fields
            if f.many_to_one and f is not self_fk
        ]

        # Naming the primary key of the related model links its rows directly.
        if foreign_column in ("pk", child._meta.pk.name, child._meta.pk.attname):
            other_fks = []
        elif foreign_column is not None:
            other_fks = [f for f in other_fks if foreign_column in (f.name, f.attname)]
            if not other_fks:
                raise ImproperlyConfigured(
                    f"{child.__name__} has no foreign key named '{foreign_column}'."
                )

        if len(other_fks) == 1:
            foreign_fk = other_fks[0]
            return RelationInfo(
                kind="multi",
                style="mapping",
                accessor=accessor,
                join_column=None,
                foreign_model=foreign_fk.related_model,
                foreign_column=foreign_fk.attname,
                mapping_model=child,
                self_column=self_fk.attname,
            )

        if other_fks:
            raise ImproperlyConfigured(
                f"Cannot tell which foreign key of {child.__name__} points to the "
                f"related rows of '{accessor}' (candidates: "
                f"{', '.join(f.name for f in other_fks)}). Declare foreign_column "
                f"on the field."
            )

        if not self_fk.null:
            raise ImproperlyConfigured(
                f"{child.__name__}.{self_fk.name} must be nullable to unlink rows "
                f"through '{accessor}'."
            )

        return RelationInfo(
            kind="multi",
            style="reverse_foreign_key",
            accessor=accessor,
            join_column=None,
            foreign_model=child,
            foreign_column=child._meta.pk.attname,
            mapping_model=child,
            self_column=self_fk.attname,
        )

    #
    # Relationships
    #

    def related_record(self, record: models.Model, name: str) -> Optional[models.Model]:
        """Return the record on the other side of a single-valued relationship."""
        info = self.relationship_metadata(type(record), name)
        try:
            return getattr(record, info["accessor"])
        except ObjectDoesNotExist:
            return None

    def linked_ids(
        self, record: models.Model, name: str, foreign_column: Optional[str] = None
    ) -> List[Any]:
        """Return the ids of the rows linked through a multi-valued relationship."""
        info = self.relationship_metadata(type(record), name, foreign_column)

        if info["style"] == "many_to_many":
            manager = getattr(record, info["accessor"])
            return list(manager.order_by("pk").values_list("pk", flat=True))

        if info["style"] in ("mapping", "reverse_foreign_key"):
            mapping_model = cast(Type[models.Model], info["mapping_model"])
            column = cast(str, info["foreign_column"])
            return list(
                mapping_model._default_manager.filter(
                    **{info["self_column"]: record.pk}
                )
                .order_by(column)
                .values_list(column, flat=True)
            )

        raise ImproperlyConfigured(f"'{name}' is not a multi-valued relationship.")

    def link_related(
        self,
        record: models.Model,
        name: str,
        foreign_id: Any,
        foreign_column: Optional[str] = None,
    ) -> None:
        info = self.relationship_metadata(type(record), name, foreign_column)
        logger.debug("Linking %r to %s %s", record, name, foreign_id)

        if info["style"] == "many_to_many":
            getattr(record, info["accessor"]).add(foreign_id)
        elif info["style"] == "mapping":
            self.create(
                info["mapping_model"],  # type: ignore
                {info["self_column"]: record.pk, info["foreign_column"]: foreign_id},
            )
        elif info["style"] == "reverse_foreign_key":
            info["foreign_model"]._default_manager.filter(pk=foreign_id).update(
                **{info["self_column"]: record.pk}
            )
        else:
            raise ImproperlyConfigured(f"'{name}' is not a multi-valued relationship.")

    def unlink_related(
        self,
        record: models.Model,
        name: str,
        foreign_id: Any,
        foreign_column: Optional[str] = None,
    ) -> None:
        info = self.relationship_metadata(type(record), name, foreign_column)
        logger.debug("Unlinking %r from %s %s", record, name, foreign_id)

        if info["style"] == "many_to_many":
            getattr(record, info["accessor"]).remove(foreign_id)
        elif info["style"] == "mapping":
            info["mapping_model"]._default_manager.filter(  # type: ignore
                **{info["self_column"]: record.pk, info["foreign_column"]: foreign_id}
            ).delete()
        elif info["style"] == "reverse_foreign_key":
            info["foreign_model"]._default_manager.filter(
                pk=foreign_id, **{info["self_column"]: record.pk}
            ).update(**{info["self_column"]: None})
        else:
            raise ImproperlyConfigured(f"'{name}' is not a multi-valued relationship.")
