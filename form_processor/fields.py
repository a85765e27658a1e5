# -*- coding: utf-8 -*-

"""Field definitions for the form_processor module."""

import datetime
import logging
import re
import weakref
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Type,
    cast,
)

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured, ValidationError
from django.core.validators import URLValidator, validate_email
from django.utils import timezone
from django.utils.dates import MONTHS, WEEKDAYS
from django.utils.module_loading import import_string
from typing_extensions import TypedDict

from form_processor.messages import resolve
from form_processor.utils import format_value, is_blank, to_decimal, trim_value

if TYPE_CHECKING:  # pragma: no cover
    from form_processor.forms import Form

logger = logging.getLogger(__name__)

Option = TypedDict("Option", {"value": Any, "label": str})

##
# FIELD_TYPES
#
# A dict mapping of field types, where the key is the string representation of
# the field type (usually its class name), and the value is the `FieldType`
# class itself.
#
# Built dynamically to include all descendants of `FieldType`.
#
FIELD_TYPES: Dict[str, Type["FieldType"]] = {}

##
# FIELD_ATTRIBUTES
#
# The attributes that a profile may declare for a field.
#
FIELD_ATTRIBUTES = frozenset(
    (
        "label",
        "required",
        "required_message",
        "order",
        "unique",
        "unique_message",
        "range_start",
        "range_end",
        "value_format",
        "password",
        "writeonly",
        "noupdate",
        "clear",
        "disabled",
        "readonly",
        "widget",
        "multiple",
        "options",
        "size",
        "min_length",
        "date_format",
        "label_column",
        "active_column",
        "sort_order",
        "foreign_column",
    )
)

##
# TYPE_DEFAULTS
#
# Field attributes whose default value comes from the field type.
#
TYPE_DEFAULTS = (
    "range_start",
    "range_end",
    "value_format",
    "password",
    "widget",
    "multiple",
    "size",
    "min_length",
    "date_format",
)


class FieldTypeOptions:
    """A base class for the Meta inner class for FieldType."""

    abstract = False
    force_replacement = False


class FieldTypeMetaclass(type):
    """A metaclass for handling FieldType configuration and registration."""

    def __new__(
        cls,
        name: str,
        bases: Tuple[type, ...],
        attrs: Dict[str, Any],
        **kwargs: Any,
    ) -> "FieldTypeMetaclass":
        """Create a new FieldType and register it.

        Args:
            cls: This metaclass.
            name: The name of the new FieldType class.
            bases: The base classes of the new FieldType class.
            attrs: The attributes of the new FieldType class.
            kwargs: Passed to super.

        Returns:
            Type[FieldType]: The new FieldType class, configured and registered.

        Raises:
            ValueError: If a FieldType with the same class name was already
                registered, and the force_replacement meta option is False.
        """
        attrs_meta = attrs.pop("Meta", None)
        attrs["_meta"] = type(
            "Meta", tuple(filter(bool, (attrs_meta, FieldTypeOptions))), {}
        )

        # Set the name from the class name if a name was not provided.
        attrs["name"] = attrs.get("name", name)

        clsobj = super().__new__(cls, name, bases, attrs, **kwargs)  # type: ignore

        # Throw an error if a FieldType with the given name was already registered.
        if clsobj.name in FIELD_TYPES and not clsobj._meta.force_replacement:
            raise ValueError(
                f"A FieldType named {name} was already registered ({FIELD_TYPES[name]})."
            )

        # Register the new field type with its name (if it's not abstract).
        if not clsobj._meta.abstract:
            FIELD_TYPES[clsobj.name] = clsobj

        return cast("FieldTypeMetaclass", clsobj)


def get_field_type(type_name: str) -> Type["FieldType"]:
    """Resolve a declared type name to a FieldType class.

    Names prefixed with "+" are dotted import paths to a FieldType
    subclass. Any other name is looked up in the FIELD_TYPES registry.

    Args:
        type_name: The declared type name.

    Returns:
        Type[FieldType]: The field type class.

    Raises:
        ImproperlyConfigured: If the type cannot be resolved.
    """
    if type_name.startswith("+"):
        try:
            field_type = import_string(type_name[1:])
        except ImportError as ex:
            raise ImproperlyConfigured(
                f"Failed to load field type '{type_name}': {ex}"
            ) from ex
        if not (isinstance(field_type, type) and issubclass(field_type, FieldType)):
            raise ImproperlyConfigured(f"'{type_name}' is not a FieldType.")
        return field_type

    try:
        return FIELD_TYPES[type_name]
    except KeyError:
        raise ImproperlyConfigured(
            f"Unknown field type '{type_name}'. Valid field types are: "
            f"{', '.join(sorted(FIELD_TYPES))}."
        )


def normalize_options(field: "Field", options: Any) -> List[Option]:
    """Convert declared options into a list of value/label dicts.

    Accepts a list of Option dicts, a list of (value, label) pairs, a
    flat list alternating values and labels, or a mapping of values to
    labels.

    Args:
        field: The field the options belong to.
        options: The declared options.

    Returns:
        List[Option]: The normalized options.

    Raises:
        ImproperlyConfigured: If a flat list has an odd number of elements.
    """
    if isinstance(options, Mapping):
        return [{"value": k, "label": str(v)} for k, v in options.items()]

    options = list(options)
    if all(isinstance(o, Mapping) for o in options):
        return [{"value": o["value"], "label": str(o["label"])} for o in options]
    if all(isinstance(o, (list, tuple)) and len(o) == 2 for o in options):
        return [{"value": v, "label": str(l)} for v, l in options]

    if len(options) % 2:
        raise ImproperlyConfigured(
            f"Options array must contain an even number of elements for field "
            f"{field.name}"
        )
    return [
        {"value": options[i], "label": str(options[i + 1])}
        for i in range(0, len(options), 2)
    ]


class FieldType(metaclass=FieldTypeMetaclass):
    """A validation strategy for a kind of field.

    Field types are stateless: every hook receives the Field whose state it
    inspects or updates. Class attributes declare the capabilities of the
    type and the defaults for the fields that use it.
    """

    # The name is set by the Metaclass when the class is initialized.
    name: str

    class Meta:
        abstract = True

    ##
    # label
    #
    # The human-friendly name of the field type, e.g. "Single-line Text".
    #
    label: str = ""

    ##
    # widget
    #
    # A rendering hint for the code that renders the field.
    #
    widget: str = "text"

    ##
    # multiple
    #
    # Whether the field accepts a sequence of values.
    #
    multiple: bool = False

    ##
    # has_options
    #
    # Whether the field validates its input against a list of options.
    #
    has_options: bool = False

    ##
    # password
    #
    # Whether the field is excluded from redisplay.
    #
    password: bool = False

    ##
    # empty_value
    #
    # The value persisted when the field was left blank.
    #
    empty_value: Any = None

    range_start: Optional[int] = None
    range_end: Optional[int] = None
    value_format: Optional[str] = None
    size: Optional[int] = None
    min_length: Optional[int] = None
    date_format: Optional[str] = None

    def setup(self, field: "Field") -> None:
        """Prepare a newly constructed field."""

    def init_options(self, field: "Field") -> List[Option]:
        """Return the default options for a field."""
        return []

    def extract_input(self, field: "Field", params: Mapping[str, Any]) -> Any:
        """Return the raw submitted value for a field."""
        return params.get(field.full_name)

    def any_input(self, field: "Field") -> bool:
        """Return True if the field's input carries a non-blank value."""
        return not is_blank(field.input)

    def numeric_input(self, field: "Field") -> Any:
        """Return the part of the input that range checks compare."""
        return field.input

    def validate(self, field: "Field") -> bool:
        """Validate the field's input.

        Implementations add an error to the field and return False if the
        input is invalid. They may stage a parsed value on the field, which
        is discarded unless the whole validation cycle succeeds.
        """
        return True

    def input_to_value(self, field: "Field") -> None:
        """Move the field's input to its value.

        Applies the field's value_format if one is declared. Does nothing
        if validate() already set the value.
        """
        if field.value is not None:
            return

        if field.value_format:
            field.value = format_value(field.value_format, field.input)
        else:
            field.value = field.input

    def validate_value(self, field: "Field") -> bool:
        """Validate the converted value of the field."""
        return True

    def format_value(self, field: "Field") -> Dict[str, Any]:
        """Return the name/value pairs used to redisplay the field."""
        return {field.name: field.value} if field.value is not None else {}


class Field:
    """One named, typed, validatable unit of form data.

    A Field holds the state of a single form input (its raw input, its
    validated value, and its errors) and delegates type-specific
    behavior to its FieldType.
    """

    name: str
    type: str
    field_type: FieldType

    input: Any
    value: Any
    init_value: Any
    errors: List[str]
    options: List[Option]

    def __init__(
        self,
        name: str,
        type_name: str = "Text",
        form: Optional["Form"] = None,
        **attributes: Any,
    ) -> None:
        self.name = name
        self.field_type = get_field_type(type_name)()
        self.type = self.field_type.name
        self.form = form

        self.label = name
        self.required = False
        self.required_message = "required"
        self.order = 1
        self.unique = False
        self.unique_message: Optional[str] = None
        self.writeonly = False
        self.noupdate = False
        self.clear = False
        self.disabled = False
        self.readonly = False
        self.label_column: Optional[str] = None
        self.active_column: Optional[str] = None
        self.sort_order: Optional[str] = None
        self.foreign_column: Optional[str] = None
        self.options = []

        for attr in TYPE_DEFAULTS:
            setattr(self, attr, getattr(self.field_type, attr))

        unknown = set(attributes) - FIELD_ATTRIBUTES
        if unknown:
            raise ImproperlyConfigured(
                f"Unknown attributes for field {name}: {', '.join(sorted(unknown))}"
            )
        for attr, value in attributes.items():
            setattr(self, attr, value)

        self.input = None
        self.value = None
        self.init_value = None
        self.errors = []

        self.field_type.setup(self)

        if self.has_options:
            self.options = normalize_options(
                self, self.options or self.field_type.init_options(self)
            )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} ({self.type})>"

    @property
    def form(self) -> Optional["Form"]:
        """The form that owns this field, if it still exists."""
        return self._form() if self._form is not None else None

    @form.setter
    def form(self, form: Optional["Form"]) -> None:
        self._form = weakref.ref(form) if form is not None else None

    @property
    def has_options(self) -> bool:
        return self.field_type.has_options

    @property
    def full_name(self) -> str:
        """The name of the field in submitted parameters.

        Fields of a sub-form are qualified with the name of the parent
        field.
        """
        form = self.form
        parent = form.parent_field if form is not None else None
        if parent is None:
            return self.name
        return f"{parent.full_name}.{self.name}"

    @property
    def short_name(self) -> str:
        """The name of the field without the form's name prefix."""
        form = self.form
        prefix = form.name_prefix if form is not None else None
        if prefix and self.name.startswith(f"{prefix}."):
            return self.name[len(prefix) + 1 :]
        return self.name

    def set_input(self, raw: Any) -> None:
        """Trim a submitted value and store it as the field's input."""
        self.input = trim_value(raw)

    def add_error(self, message: str, *args: Any) -> bool:
        """Add a localized error message to the field.

        Errors of fields that belong to a sub-form are attached to the
        sub-form's parent field.

        Args:
            message: A message key or literal message.
            args: Values interpolated into the message.

        Returns:
            bool: Always False, so that validators can return the result.
        """
        error_field = self
        form = self.form
        if form is not None and form.parent_field is not None:
            error_field = form.parent_field

        error_field.errors.append(resolve(message, *args))
        return False

    def has_errors(self) -> bool:
        return bool(self.errors)

    def reset_errors(self) -> None:
        self.errors = []

    def any_input(self) -> bool:
        return self.field_type.any_input(self)

    def test_multiple(self) -> bool:
        """Ensure that a sequence of values is only given to multiple fields."""
        if isinstance(self.input, list) and not self.multiple:
            return self.add_error("multiple")
        return True

    def test_options(self) -> bool:
        """Ensure that every submitted value matches one of the options."""
        if not self.has_options or self.input is None:
            return True

        valid_values = {str(option["value"]) for option in self.options}
        inputs = self.input if isinstance(self.input, list) else [self.input]
        for value in inputs:
            if str(value) not in valid_values:
                return self.add_error("invalid_option", value)
        return True

    def test_range(self) -> bool:
        """Ensure that the input is within the declared numeric range.

        Both bounds are optional and inclusive. Fields with options are
        not range checked, since their options define the valid values.
        """
        if self.has_options or self.input is None:
            return True

        low, high = self.range_start, self.range_end
        if low is None and high is None:
            return True

        number = to_decimal(self.field_type.numeric_input(self))
        if number is None:
            return self.add_error("numeric")

        if low is not None and high is not None:
            if low <= number <= high:
                return True
            return self.add_error("range_between", low, high)
        if low is not None:
            return number >= low or self.add_error("range_min", low)
        return number <= cast(int, high) or self.add_error("range_max", high)

    def validate(self) -> bool:
        return self.field_type.validate(self)

    def input_to_value(self) -> None:
        self.field_type.input_to_value(self)

    def validate_value(self) -> bool:
        return self.field_type.validate_value(self)

    def format_value(self) -> Dict[str, Any]:
        return self.field_type.format_value(self)

    def value_changed(self) -> bool:
        """Return True if the value differs from the one initially loaded."""

        def _normalize(value: Any) -> str:
            values = value if isinstance(value, (list, tuple)) else [value]
            return "|".join(
                sorted(
                    v.isoformat() if hasattr(v, "isoformat") else str(v)
                    for v in values
                    if v is not None
                )
            )

        return _normalize(self.init_value) != _normalize(self.value)

    def required_text(self) -> str:
        return "required" if self.required else "optional"

    def dump(self) -> None:
        """Log the state of the field for debugging."""
        logger.debug(
            "Field %s: type=%s required=%s password=%s value=%r init_value=%r "
            "input=%r options=%r",
            self.name,
            self.type,
            self.required,
            self.password,
            self.value,
            self.init_value,
            self.input,
            self.options if self.has_options else None,
        )


def validate_field(field: Field) -> bool:
    """Run one validation cycle for a field.

    Resets the field, checks for required input, then runs the multiple,
    options, type and range checks in order (stopping at the first
    failure) before converting the input to a value and validating that
    value. A field never ends the cycle with both errors and a value.

    Args:
        field: The field to validate.

    Returns:
        bool: True if the field is valid.
    """
    field.reset_errors()
    field.value = None

    # See if anything was submitted.
    if not field.any_input():
        if field.required:
            field.add_error(field.required_message)
        return not field.required

    checks = (
        field.test_multiple,
        field.test_options,
        field.validate,
        field.test_range,
    )
    for check in checks:
        if not check() or field.has_errors():
            field.value = None
            return False

    # Move data from input to value.
    field.input_to_value()

    if field.has_errors() or not field.validate_value() or field.has_errors():
        field.value = None
        return False

    return True


class Text(FieldType):
    """A field for collecting single-line text values."""

    label = "Single-line Text"

    def validate(self, field: Field) -> bool:
        length = len(str(field.input))
        if field.size and length > field.size:
            return field.add_error("max_length", field.size)
        if field.min_length and length < field.min_length:
            return field.add_error("min_length", field.min_length)
        return True


class TextArea(Text):
    """A field for collecting multiline text values."""

    label = "Multi-line Text"
    widget = "textarea"


class Password(Text):
    """A field for collecting passwords, which are never redisplayed."""

    label = "Password"
    widget = "password"
    password = True
    min_length = 6


class Hidden(Text):
    """A text field rendered as a hidden input."""

    label = "Hidden"
    widget = "hidden"


class Email(Text):
    """A field for collecting email addresses."""

    label = "Email Address"

    def validate(self, field: Field) -> bool:
        if not super().validate(field):
            return False
        try:
            validate_email(field.input)
        except ValidationError:
            return field.add_error("email")
        return True


class URL(Text):
    """A field for collecting URL values."""

    label = "URL"

    validator = URLValidator()

    def validate(self, field: Field) -> bool:
        if not super().validate(field):
            return False
        try:
            self.validator(field.input)
        except ValidationError:
            return field.add_error("url")
        return True


class Integer(FieldType):
    """A field for collecting integer values."""

    label = "Integer"

    pattern = re.compile(r"^[-+]?\d+$")
    message = "integer"

    def validate(self, field: Field) -> bool:
        if not self.pattern.match(str(field.input)):
            return field.add_error(self.message)
        return True

    def input_to_value(self, field: Field) -> None:
        if field.value is not None:
            return
        if field.value_format:
            field.value = format_value(field.value_format, field.input)
        else:
            field.value = int(field.input)


class PosInteger(Integer):
    """A field for collecting positive integer values."""

    label = "Positive Integer"

    pattern = re.compile(r"^\+?\d+$")
    message = "positive_integer"


class Money(FieldType):
    """A field for collecting currency amounts, formatted to two places."""

    label = "Money"
    value_format = "%.2f"

    def numeric_input(self, field: Field) -> Any:
        return self._strip(field.input)

    def validate(self, field: Field) -> bool:
        if to_decimal(self._strip(field.input)) is None:
            return field.add_error("money")
        return True

    def input_to_value(self, field: Field) -> None:
        if field.value is not None:
            return
        amount = self._strip(field.input)
        field.value = (
            format_value(field.value_format, amount) if field.value_format else amount
        )

    @staticmethod
    def _strip(value: Any) -> str:
        return str(value).replace("$", "").replace(",", "").strip()


class Boolean(FieldType):
    """A field for collecting a boolean value."""

    label = "Boolean"
    widget = "checkbox"
    empty_value = False

    FALSE_VALUES = ("", "0", "false", "off", "no")

    def is_true(self, value: Any) -> bool:
        return str(value).strip().lower() not in self.FALSE_VALUES

    def input_to_value(self, field: Field) -> None:
        field.value = self.is_true(field.input)

    def format_value(self, field: Field) -> Dict[str, Any]:
        if field.value is None:
            return {}
        return {field.name: 1 if field.value else 0}


class Checkbox(Boolean):
    """A field for collecting a boolean value with a checkbox."""

    label = "Checkbox"


class Select(FieldType):
    """A field for collecting a single value from a list of options."""

    label = "Select"
    widget = "select"
    has_options = True


class Multiple(Select):
    """A field for collecting any number of values from a list of options."""

    label = "Multiple Select"
    multiple = True

    def input_to_value(self, field: Field) -> None:
        if field.value is not None:
            return
        field.value = list(_as_list(field.input))

    def format_value(self, field: Field) -> Dict[str, Any]:
        if field.value is None:
            return {}
        return {field.name: list(_as_list(field.value))}


class IntRange(Select):
    """A select list of the integers in the field's range."""

    label = "Integer Range"

    def setup(self, field: Field) -> None:
        if field.range_start is None or field.range_end is None:
            raise ImproperlyConfigured(
                f"Field {field.name} requires both range_start and range_end."
            )

    def init_options(self, field: Field) -> List[Option]:
        return [
            {"value": i, "label": str(i)}
            for i in range(
                int(cast(int, field.range_start)), int(cast(int, field.range_end)) + 1
            )
        ]

    def input_to_value(self, field: Field) -> None:
        if field.value is not None:
            return
        field.value = int(field.input)


class Hour(IntRange):
    """A select list of hours, 0 to 23."""

    label = "Hour"
    range_start = 0
    range_end = 23


class Minute(IntRange):
    """A select list of minutes, 0 to 59."""

    label = "Minute"
    range_start = 0
    range_end = 59


class Second(IntRange):
    """A select list of seconds, 0 to 59."""

    label = "Second"
    range_start = 0
    range_end = 59


class Month(IntRange):
    """A select list of month numbers, 1 to 12."""

    label = "Month"
    range_start = 1
    range_end = 12


class MonthDay(IntRange):
    """A select list of days of the month, 1 to 31."""

    label = "Day of Month"
    range_start = 1
    range_end = 31


class MonthName(Select):
    """A select list of month names."""

    label = "Month Name"

    def init_options(self, field: Field) -> List[Option]:
        return [{"value": k, "label": str(v)} for k, v in MONTHS.items()]

    def input_to_value(self, field: Field) -> None:
        field.value = int(field.input)


class Weekday(Select):
    """A select list of weekday names, Monday being 0."""

    label = "Weekday"

    def init_options(self, field: Field) -> List[Option]:
        return [{"value": k, "label": str(v)} for k, v in WEEKDAYS.items()]

    def input_to_value(self, field: Field) -> None:
        field.value = int(field.input)


class Date(FieldType):
    """A field for collecting a date as text."""

    label = "Date"
    date_format = "%Y-%m-%d"

    def validate(self, field: Field) -> bool:
        date_format = cast(str, field.date_format)
        try:
            field.value = datetime.datetime.strptime(
                str(field.input), date_format
            ).date()
        except ValueError:
            return field.add_error("date", date_format)
        return True

    def format_value(self, field: Field) -> Dict[str, Any]:
        value = field.value
        if value is None:
            return {}
        if hasattr(value, "strftime"):
            value = value.strftime(cast(str, field.date_format))
        return {field.name: value}


class DateTimeDMYHM(FieldType):
    """A date and time entered as separate day, month, year, hour and minute
    inputs.

    The parts are submitted as "<name>.day", "<name>.month" and so on, and
    are validated by a sub-form whose errors are attached to this field.
    """

    label = "Date & Time"
    widget = "compound"

    PARTS = ("day", "month", "year", "hour", "minute")

    def setup(self, field: Field) -> None:
        from form_processor.forms import Form

        field.sub_form = Form(  # type: ignore
            name=field.name,
            parent_field=field,
            profile={
                "required": [
                    ("day", "MonthDay"),
                    ("month", "Month"),
                    ("year", {"type": "Integer", "range_start": 1, "range_end": 9999}),
                ],
                "optional": [
                    ("hour", "Hour"),
                    ("minute", "Minute"),
                ],
            },
        )

    def extract_input(self, field: Field, params: Mapping[str, Any]) -> Any:
        parts = {
            part: trim_value(params[f"{field.full_name}.{part}"])
            for part in self.PARTS
            if f"{field.full_name}.{part}" in params
        }
        return parts or None

    def any_input(self, field: Field) -> bool:
        parts = field.input if isinstance(field.input, dict) else {}
        return any(not is_blank(v) for v in parts.values())

    def validate(self, field: Field) -> bool:
        sub_form: "Form" = field.sub_form  # type: ignore
        sub_form.clear()
        sub_form.validate(
            {f"{field.full_name}.{part}": v for part, v in field.input.items()}
        )
        if field.has_errors() or not sub_form.validated:
            return False

        try:
            value = datetime.datetime(
                sub_form.value("year"),
                sub_form.value("month"),
                sub_form.value("day"),
                sub_form.value("hour") or 0,
                sub_form.value("minute") or 0,
            )
        except ValueError:
            return field.add_error("invalid_date")

        if timezone.is_naive(value) and settings.USE_TZ:
            value = timezone.make_aware(value)

        field.value = value
        return True

    def format_value(self, field: Field) -> Dict[str, Any]:
        value = field.value
        if value is None:
            return {}
        if isinstance(value, datetime.datetime) and timezone.is_aware(value):
            value = timezone.localtime(value)
        return {
            f"{field.name}.{part}": getattr(value, part, 0) for part in self.PARTS
        }


def _as_list(value: Any) -> Iterable[Any]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple, set)):
        return value
    return (value,)


def as_list(value: Any) -> List[Any]:
    """Return a field value as a list of values."""
    return list(_as_list(value))


__all__: Sequence[str] = (
    "FIELD_TYPES",
    "Field",
    "FieldType",
    "Option",
    "as_list",
    "get_field_type",
    "normalize_options",
    "validate_field",
)
