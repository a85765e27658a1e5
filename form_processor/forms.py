# -*- coding: utf-8 -*-

"""Form definitions for the form_processor module."""

import logging
import weakref
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    cast,
)

from django.core.exceptions import ImproperlyConfigured, ValidationError
from simpleeval import FunctionNotDefined, InvalidExpression, NameNotDefined

from form_processor.conf import get_setting
from form_processor.fields import (
    Boolean,
    Field,
    Option,
    normalize_options,
    validate_field,
)
from form_processor.signals import (
    form_cross_validate,
    post_form_validate,
    pre_form_validate,
)
from form_processor.utils import (
    FormEvaluator,
    evaluate_expression,
    flatten_params,
    is_blank,
    snake_case,
)

logger = logging.getLogger(__name__)

FieldValidator = Callable[[Field], Any]
OptionLoader = Callable[[Field], Any]
InitialLoader = Callable[[Field, Any], Any]

##
# FIELD_GROUPS
#
# The profile groups that declare fields, in the order they are built. Each
# group has an "auto_" counterpart whose field types are guessed.
#
FIELD_GROUPS = ("required", "optional", "fields")

##
# MODIFIABLE_ATTRIBUTES
#
# The field attributes that profile modifiers may set for a validation run.
#
MODIFIABLE_ATTRIBUTES = ("required", "disabled", "clear", "noupdate", "readonly")

##
# HOOK_KINDS
#
# The kinds of per-field hooks that a Form class may declare with the
# decorators below, mapped to the attribute that holds their handlers.
#
HOOK_KINDS = {
    "validate": "field_validators",
    "options": "option_loaders",
    "initial": "initial_loaders",
}


def _hook(kind: str, field_names: Sequence[str]) -> Callable[[Callable], Callable]:
    def decorator(func: Callable) -> Callable:
        hooks = list(getattr(func, "_form_hooks", ()))
        hooks.extend((kind, name) for name in field_names)
        func._form_hooks = hooks  # type: ignore
        return func

    return decorator


def validates(*field_names: str) -> Callable[[Callable], Callable]:
    """Mark a form method as the validation hook for the named fields.

    The method is called with each field after the field passed its own
    validation, and may add errors to it.

    Args:
        field_names: The names of the fields (without a name prefix).

    Returns:
        Callable: The decorator.
    """
    return _hook("validate", field_names)


def options_for(*field_names: str) -> Callable[[Callable], Callable]:
    """Mark a form method as the option loader for the named fields.

    The method is called with the field and returns its options.
    """
    return _hook("options", field_names)


def initial_value_for(*field_names: str) -> Callable[[Callable], Callable]:
    """Mark a form method as the initial value loader for the named fields.

    The method is called with the field and the bound item and returns the
    field's initial value.
    """
    return _hook("initial", field_names)


class FormMetaclass(type):
    """A metaclass that collects the hooks declared on Form classes."""

    def __new__(
        cls,
        name: str,
        bases: Tuple[type, ...],
        attrs: Dict[str, Any],
        **kwargs: Any,
    ) -> "FormMetaclass":
        clsobj = super().__new__(cls, name, bases, attrs, **kwargs)  # type: ignore

        # Hooks declared on subclasses override the ones of their bases.
        hooks: Dict[str, Dict[str, str]] = {kind: {} for kind in HOOK_KINDS}
        for klass in reversed(clsobj.__mro__):
            for attr_name, attr in vars(klass).items():
                for kind, field_name in getattr(attr, "_form_hooks", ()):
                    hooks[kind][field_name] = attr_name

        clsobj._hooks = hooks
        return cast("FormMetaclass", clsobj)


class Form(metaclass=FormMetaclass):
    """An ordered collection of fields built from a declarative profile.

    The profile is a mapping with the following keys, all optional:

        required, optional, fields: the fields of the form, as a mapping, a
            list of (name, type) pairs, or a flat list alternating names
            and types. A type is either a type name or a mapping of field
            attributes that includes "type".
        auto_required, auto_optional, auto_fields: lists of field names
            whose types are guessed with guess_field_type().
        dependency: a list of groups of field names. If any field of a
            group is submitted, every field of the group is required for
            that validation run.
        unique: a list of field names (or a mapping of field names to
            error messages) whose values must be unique in the database.
        modifiers: a mapping of field names to mappings of attribute names
            to expressions, evaluated against the submitted values at the
            start of each validation run.
    """

    _hooks: Dict[str, Dict[str, str]]

    ##
    # form_name
    #
    # The name of the form. Defaults to the snake_case name of the class.
    #
    form_name: Optional[str] = None

    ##
    # profile
    #
    # The declarative description of the form's fields.
    #
    profile: Optional[Mapping[str, Any]] = None

    ##
    # name_prefix
    #
    # Prefixed to every field name, separated by a dot, to tell apart the
    # fields of multiple forms on one page.
    #
    name_prefix: Optional[str] = None

    ##
    # html_prefix
    #
    # If set, submitted keys that start with the form name and a dot are
    # also available without that prefix.
    #
    html_prefix: bool = False

    ##
    # verbose
    #
    # If set, the state of every field is logged after each validation.
    #
    verbose: Optional[bool] = None

    fields: List[Field]
    item: Any
    item_id: Any

    def __init__(
        self,
        item: Any = None,
        item_id: Any = None,
        *,
        name: Optional[str] = None,
        profile: Optional[Mapping[str, Any]] = None,
        init_object: Any = None,
        name_prefix: Optional[str] = None,
        html_prefix: Optional[bool] = None,
        parent_field: Optional[Field] = None,
        user_data: Optional[Dict[str, Any]] = None,
        validators: Optional[Mapping[str, FieldValidator]] = None,
        option_loaders: Optional[Mapping[str, OptionLoader]] = None,
        initial_loaders: Optional[Mapping[str, InitialLoader]] = None,
        verbose: Optional[bool] = None,
    ) -> None:
        self.name = name or self.form_name or snake_case(type(self).__name__)

        if profile is not None:
            self.profile = profile
        if name_prefix is not None:
            self.name_prefix = name_prefix
        if html_prefix is not None:
            self.html_prefix = html_prefix
        if verbose is not None:
            self.verbose = verbose
        if self.verbose is None:
            self.verbose = bool(get_setting("VERBOSE", False))

        self.parent_field = parent_field
        self.user_data = user_data or {}
        self.init_object = init_object

        if item is not None and item_id is None:
            item_id = getattr(item, "pk", None)
        self.item = item
        self.item_id = item_id

        self.field_validators: Dict[str, FieldValidator] = {
            **self._bind_hooks("validate"),
            **(validators or {}),
        }
        self.option_loaders: Dict[str, OptionLoader] = {
            **self._bind_hooks("options"),
            **(option_loaders or {}),
        }
        self.initial_loaders: Dict[str, InitialLoader] = {
            **self._bind_hooks("initial"),
            **(initial_loaders or {}),
        }

        self.fields = []
        self.requires: List[Field] = []
        self.modified: List[Tuple[Field, str, Any]] = []
        self._params: Optional[Dict[str, Any]] = None
        self.ran_validation = False
        self.validated = False
        self.errors = 0
        self.updated_or_created: Optional[str] = None

        self.build_form()

        if self.item is None and self.item_id is not None:
            self.item = self.init_item()

        self.init_from_object()
        self.load_options()
        self.init()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def _bind_hooks(self, kind: str) -> Dict[str, Callable]:
        return {
            field_name: getattr(self, attr_name)
            for field_name, attr_name in self._hooks[kind].items()
        }

    @property
    def parent_field(self) -> Optional[Field]:
        """The field that owns this form, if it's a sub-form."""
        return self._parent_field() if self._parent_field is not None else None

    @parent_field.setter
    def parent_field(self, field: Optional[Field]) -> None:
        self._parent_field = weakref.ref(field) if field is not None else None

    def init(self) -> None:
        """A hook called at the end of construction."""

    #
    # Building the form
    #

    def build_form(self) -> None:
        """Build the fields of the form from its profile.

        Raises:
            ImproperlyConfigured: If the profile is missing or invalid.
        """
        profile = self.profile
        if not isinstance(profile, Mapping):
            raise ImproperlyConfigured(
                f"Please define a 'profile' mapping for {type(self).__name__}."
            )

        for group in FIELD_GROUPS:
            required = group == "required"
            for name, type_data in self._field_specs(profile.get(group)):
                self.set_field(name, type_data, required)
            for name in profile.get(f"auto_{group}") or ():
                self.set_field(name, "Auto", required)

        self.check_modifiers()

    def _field_specs(self, fields: Any) -> Iterable[Tuple[str, Any]]:
        if not fields:
            return ()
        if isinstance(fields, Mapping):
            return list(fields.items())

        fields = list(fields)
        if all(isinstance(f, (list, tuple)) and len(f) == 2 for f in fields):
            return [(name, type_data) for name, type_data in fields]

        if len(fields) % 2:
            raise ImproperlyConfigured(
                f"Field list of {type(self).__name__} must alternate names and types."
            )
        return list(zip(fields[::2], fields[1::2]))

    def make_field(self, name: str, type_data: Any) -> Field:
        """Create a field from its profile declaration.

        Args:
            name: The name of the field, without the name prefix.
            type_data: A type name, or a mapping of field attributes that
                includes the type name as "type".

        Returns:
            Field: The new field.

        Raises:
            ImproperlyConfigured: If the name or type is missing.
        """
        if not name or not type_data:
            raise ImproperlyConfigured("Must pass name and type to make_field")

        attributes = (
            {"type": type_data} if isinstance(type_data, str) else dict(type_data)
        )
        type_name = attributes.pop("type", None)
        if type_name == "Auto":
            type_name = self.guess_field_type(name)
        if not type_name:
            raise ImproperlyConfigured(f"Failed to set field type for field [{name}]")

        full_name = f"{self.name_prefix}.{name}" if self.name_prefix else name
        field = Field(full_name, type_name, form=self, **attributes)
        if "order" not in attributes:
            field.order = len(self.fields) + 1
        return field

    def set_field(self, name: str, type_data: Any, required: bool = False) -> Field:
        """Create a field and add it to the form."""
        if self.exists(name):
            raise ImproperlyConfigured(
                f"Field [{name}] is declared more than once in {type(self).__name__}."
            )

        field = self.make_field(name, type_data)
        field.required = field.required or required
        self.fields.append(field)
        return field

    def check_modifiers(self) -> None:
        """Ensure that the profile's modifiers reference existing names.

        Raises:
            ImproperlyConfigured: If a modifier references an unknown field,
                attribute, variable or function.
        """
        names = {field.short_name: None for field in self.fields}

        for field_name, modifiers in self.modifiers.items():
            if field_name not in names:
                raise ImproperlyConfigured(
                    f"Modifiers were declared for a field named '{field_name}', "
                    f"but no field with that name exists in the form. Valid fields "
                    f"are: {', '.join(names)}."
                )

            for attribute, expression in modifiers.items():
                if attribute not in MODIFIABLE_ATTRIBUTES:
                    raise ImproperlyConfigured(
                        f"The '{attribute}' attribute of field '{field_name}' cannot "
                        f"be modified. Valid attributes are: "
                        f"{', '.join(MODIFIABLE_ATTRIBUTES)}."
                    )

                try:
                    evaluate_expression(expression, names=names)

                # If the expression references a name that isn't a field on the
                # form, the profile is broken.
                except NameNotDefined as ex:
                    valid_fields = ", ".join(names.keys())
                    name = getattr(ex, "name", "")
                    raise ImproperlyConfigured(
                        f"The '{attribute}' modifier of field '{field_name}' references "
                        f"a variable named '{name}', but no field with that name "
                        f"exists in the form. Valid fields are: {valid_fields}."
                    ) from ex

                # Same for functions that aren't in scope for the expression.
                except FunctionNotDefined as ex:
                    valid_functions = ", ".join(FormEvaluator.FUNCTIONS.keys())
                    func_name = getattr(ex, "func_name", "")
                    raise ImproperlyConfigured(
                        f"The '{attribute}' modifier of field '{field_name}' is trying "
                        f"to use the function {func_name}, but that function does not "
                        f"exist, or cannot be used in expressions. Valid functions "
                        f"are: {valid_functions}"
                    ) from ex

                except (InvalidExpression, SyntaxError) as ex:
                    raise ImproperlyConfigured(
                        f"The '{attribute}' modifier of field '{field_name}' is "
                        f"invalid. Error message: '{str(ex)}'"
                    ) from ex

                # Blank values can't always be compared or converted.
                except (TypeError, ValueError, ArithmeticError):
                    continue

    @property
    def modifiers(self) -> Mapping[str, Mapping[str, str]]:
        return cast(Mapping, self.profile).get("modifiers") or {}

    #
    # Field lookups
    #

    def field(self, name: str, no_die: bool = False) -> Optional[Field]:
        """Return the field with the given name.

        Args:
            name: The name of the field, without the name prefix.
            no_die: If True, return None instead of raising.

        Returns:
            Optional[Field]: The field.

        Raises:
            LookupError: If there's no such field and no_die is False.
        """
        full_name = f"{self.name_prefix}.{name}" if self.name_prefix else name
        for field in self.fields:
            if field.name == full_name:
                return field

        if no_die:
            return None
        raise LookupError(f"Failed to lookup field name [{name}] in form [{self.name}]")

    def exists(self, name: str) -> bool:
        return self.field(name, no_die=True) is not None

    def _field(self, name: str) -> Field:
        return cast(Field, self.field(name))

    def sorted_fields(self) -> List[Field]:
        return sorted(self.fields, key=lambda f: f.order)

    def value(self, name: str, no_die: bool = False) -> Any:
        field = self.field(name, no_die=no_die)
        return field.value if field is not None else None

    def value_changed(self, name: str) -> bool:
        return self._field(name).value_changed()

    def required_text(self, name: str) -> str:
        return self._field(name).required_text()

    def has_error(self) -> bool:
        """Return True if the form was validated and failed."""
        return self.ran_validation and not self.validated

    def has_errors(self) -> bool:
        """Return True if any field has errors."""
        return any(field.has_errors() for field in self.fields)

    def error_fields(self) -> List[Field]:
        return [field for field in self.sorted_fields() if field.has_errors()]

    def error_field_names(self) -> List[str]:
        return [field.name for field in self.error_fields()]

    #
    # Initial values and options
    #

    def init_item(self) -> Any:
        """Load the item identified by item_id. Forms without a model have none."""
        return None

    def guess_field_type(self, name: str) -> str:
        raise ImproperlyConfigured(
            f"Cannot guess the type of field [{name}] of {type(self).__name__}, "
            f"which is not bound to a model."
        )

    def init_from_object(self) -> None:
        """Set the initial value of every field from the bound object.

        The object is init_object if given, otherwise the item.
        """
        item = self.init_object if self.init_object is not None else self.item
        if item is None:
            return

        for field in self.fields:
            loader = self.initial_loaders.get(field.short_name)
            value = loader(field, item) if loader else self.init_value(field, item)
            field.init_value = value
            field.value = list(value) if isinstance(value, list) else value

    def init_value(self, field: Field, item: Any) -> Any:
        """Return the initial value of a field from a mapping or an object."""
        if isinstance(item, Mapping):
            return item.get(field.short_name)
        return getattr(item, field.short_name, None)

    def load_options(self) -> None:
        for field in self.fields:
            self.load_field_options(field)

    def load_field_options(self, field: Field, options: Any = None) -> None:
        """Load the options of a field.

        Options come from the given list, the field's option loader, or
        lookup_options(), in that order. Fields without options capability
        are skipped, and fields keep their declared options if nothing is
        found.
        """
        if not field.has_options:
            return

        if options is None:
            loader = self.option_loaders.get(field.short_name)
            options = loader(field) if loader else self.lookup_options(field)
        if not options:
            return

        field.options = normalize_options(field, options)

    def lookup_options(self, field: Field) -> Optional[List[Option]]:
        return None

    #
    # Parameters
    #

    @property
    def params(self) -> Dict[str, Any]:
        """The submitted parameters, or the round-trip map of the values."""
        if self._params is None:
            self._params = self.init_params()
        return self._params

    @params.setter
    def params(self, params: Optional[Mapping[str, Any]]) -> None:
        params = flatten_params(params)

        if self.html_prefix:
            prefix = f"{self.name}."
            prefixed = [key for key in params if key.startswith(prefix)]
            for key in prefixed:
                params[key[len(prefix) :]] = params.pop(key)

        self._params = params

    def init_params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for field in self.fields:
            if field.writeonly:
                continue
            params.update(
                {k: v for k, v in field.format_value().items() if v is not None}
            )
        return params

    def reset_params(self) -> None:
        self._params = None

    def fif(self) -> Dict[str, Any]:
        """Return the round-trip map for redisplaying the form.

        Password fields are never included.
        """
        params = dict(self.params)
        for field in self.fields:
            if field.password:
                params.pop(field.name, None)
        return params

    #
    # Validation
    #

    def clear(self) -> None:
        """Reset the validation state and all values, keeping the fields."""
        self.ran_validation = False
        self.validated = False
        self.errors = 0
        self.updated_or_created = None
        self.item = None
        self.item_id = None
        self.clear_values()
        self.reset_params()

    def clear_values(self) -> None:
        for field in self.fields:
            field.input = None
            field.value = None
            field.reset_errors()

    def validate(self, params: Optional[Mapping[str, Any]] = None) -> bool:
        """Validate the form against submitted parameters.

        The result is cached until clear() is called.

        Args:
            params: The submitted parameters. Defaults to the current
                round-trip map.

        Returns:
            bool: True if every field is valid.
        """
        if self.ran_validation:
            return self.validated

        if params is None:
            params = self.params

        pre_form_validate.send(sender=type(self), form=self, params=params)

        self.params = params
        params = self.params

        try:
            self.set_dependency()
            self.apply_modifiers()

            for field in self.fields:
                field.set_input(field.field_type.extract_input(field, params))

            for field in self.fields:
                if field.clear:
                    field.reset_errors()
                    field.value = None
                    continue
                validate_field(field)

            for field in self.fields:
                if field.value is None:
                    continue
                validator = self.field_validators.get(field.short_name)
                if validator is not None:
                    validator(field)

            self.run_cross_validation(params)
            self.model_validate()
        finally:
            self.clear_modifiers()
            self.clear_dependency()

        for field in self.fields:
            if field.has_errors():
                field.value = None

        self.errors = len(self.error_fields())
        self.ran_validation = True
        self.validated = not self.errors

        logger.debug(
            "Validated form %s: %s (%d fields with errors)",
            self.name,
            "passed" if self.validated else "failed",
            self.errors,
        )
        if self.verbose:
            self.dump_fields()

        post_form_validate.send(sender=type(self), form=self, params=params)

        return self.validated

    def set_dependency(self) -> None:
        """Require every field of a dependency group with submitted values."""
        params = self.params
        for group in cast(Mapping, self.profile).get("dependency") or ():
            if len(group) < 2:
                continue

            for name in group:
                field = self._field(name)
                value = params.get(field.full_name)
                if is_blank(value):
                    continue
                # An unchecked box does not count.
                field_type = field.field_type
                if isinstance(field_type, Boolean) and not field_type.is_true(value):
                    continue

                for member_name in group:
                    member = self._field(member_name)
                    if member.required:
                        continue
                    member.required = True
                    self.requires.append(member)
                break

    def clear_dependency(self) -> None:
        for field in self.requires:
            field.required = False
        self.requires = []

    def apply_modifiers(self) -> None:
        """Set field attributes from the profile's modifier expressions."""
        if not self.modifiers:
            return

        params = self.params
        names = {}
        for field in self.fields:
            value = params.get(field.full_name)
            names[field.short_name] = None if is_blank(value) else value

        for field_name, modifiers in self.modifiers.items():
            field = self._field(field_name)
            for attribute, expression in modifiers.items():
                try:
                    value = bool(evaluate_expression(expression, names))
                except NameNotDefined:
                    continue
                self.modified.append((field, attribute, getattr(field, attribute)))
                setattr(field, attribute, value)

    def clear_modifiers(self) -> None:
        for field, attribute, value in reversed(self.modified):
            setattr(field, attribute, value)
        self.modified = []

    def run_cross_validation(self, params: Mapping[str, Any]) -> None:
        """Run cross_validate() and the form_cross_validate receivers.

        Receivers may raise a ValidationError keyed by field name to add
        errors to those fields. Any other exception is raised.
        """
        self.cross_validate(params)

        responses = form_cross_validate.send_robust(
            sender=type(self), form=self, params=params
        )
        for _, response in responses:
            if not isinstance(response, Exception):
                continue
            if isinstance(response, ValidationError) and hasattr(response, "error_dict"):
                for name, messages in response.message_dict.items():
                    field = self._field(name)
                    for message in messages:
                        field.add_error(message)
                continue
            raise response

    def cross_validate(self, params: Mapping[str, Any]) -> None:
        """A hook for validation rules that span multiple fields."""

    def model_validate(self) -> None:
        """A hook for validating values against the database."""

    def dump_fields(self) -> None:
        logger.info(
            "Form %s: validated=%s errors=%d", self.name, self.validated, self.errors
        )
        for field in self.sorted_fields():
            field.dump()
            if field.has_errors():
                logger.info("Field %s errors: %s", field.name, "; ".join(field.errors))
