# -*- coding: utf-8 -*-
import datetime
import logging
from typing import Any

import pytest
from django.core.exceptions import ImproperlyConfigured
from hypothesis import given
from hypothesis import strategies as st

from form_processor.fields import (
    FIELD_TYPES,
    Field,
    FieldType,
    get_field_type,
    validate_field,
)
from form_processor.forms import Form
from form_processor.utils import is_blank, trim_value

OPTIONS = [("1", "One"), ("2", "Two"), ("3", "Three")]


def _validate(type_data: Any, value: Any, required: bool = False) -> Field:
    """Validate a single-field form and return the field."""
    group = "required" if required else "optional"
    form = Form(name="test", profile={group: {"f": type_data}})
    form.validate({"f": value})
    return form._field("f")


def test_duplicate_field_registration() -> None:
    """Ensure that a user cannot overwrite a field type unless is forces
    replacement."""

    original_field = FIELD_TYPES["Text"]

    with pytest.raises(ValueError):

        class Text(FieldType):
            pass

    # Specifying force_replacement in the Meta options allows a field type to
    # overwrite an existing one.
    class Text(FieldType):  # noqa: F811
        class Meta:
            force_replacement = True

    assert FIELD_TYPES["Text"] is Text

    FIELD_TYPES["Text"] = original_field


def test_abstract_field_type() -> None:
    """Ensure that abstract field types do not appear in the FIELD_TYPES
    mapping."""

    class CustomFieldType(FieldType):
        class Meta:
            abstract = True

    class ChildFieldType(CustomFieldType):
        pass

    assert CustomFieldType.name not in FIELD_TYPES
    assert ChildFieldType.name in FIELD_TYPES

    del FIELD_TYPES[ChildFieldType.name]


def test_get_field_type() -> None:
    """Ensure that type names and dotted paths resolve to field types."""
    assert get_field_type("Text") is FIELD_TYPES["Text"]
    assert get_field_type("+form_processor.fields.Money") is FIELD_TYPES["Money"]

    with pytest.raises(ImproperlyConfigured):
        get_field_type("NoSuchType")

    with pytest.raises(ImproperlyConfigured):
        get_field_type("+form_processor.fields.NoSuchType")

    # Dotted paths must point to a FieldType.
    with pytest.raises(ImproperlyConfigured):
        get_field_type("+form_processor.utils.is_blank")


def test_unknown_field_attribute() -> None:
    with pytest.raises(ImproperlyConfigured):
        Field("name", "Text", colour="blue")


@given(
    blank=st.one_of(
        st.none(),
        st.text(alphabet=" \t\r\n", max_size=5),
        st.lists(st.text(alphabet=" \t", max_size=3), max_size=3),
    )
)
def test_required_field_with_blank_input(blank: Any) -> None:
    """Ensure that a required field with blank input gets exactly one error,
    and no value."""
    field = _validate("Text", blank, required=True)

    assert field.errors == ["This field is required"]
    assert field.value is None


@given(blank=st.one_of(st.none(), st.text(alphabet=" \t", max_size=5)))
def test_optional_field_with_blank_input(blank: Any) -> None:
    field = _validate("Integer", blank)

    assert field.errors == []
    assert field.value is None


@given(amount=st.integers(min_value=0, max_value=10 ** 9))
def test_money_value_format(amount: int) -> None:
    """Ensure that the Money value_format is applied to the input."""
    field = _validate("Money", str(amount))

    assert field.value == f"{amount}.00"


def test_value_format() -> None:
    field = _validate({"type": "Text", "value_format": "%.3f"}, "1.5")
    assert field.value == "1.500"

    field = _validate("Money", "$1,234.5")
    assert field.value == "1234.50"


def test_money_range() -> None:
    """Ensure that currency symbols and separators don't fail range checks."""
    price = {"type": "Money", "range_start": 0, "range_end": 5000}

    field = _validate(price, "$1,000")
    assert field.errors == []
    assert field.value == "1000.00"

    field = _validate(price, "$5,000.01")
    assert field.errors == ["value must be between 0 and 5000"]
    assert field.value is None


@pytest.mark.parametrize(
    "value,valid",
    [("18", True), ("50", True), ("120", True), ("17", False), ("121", False)],
)
def test_range(value: str, valid: bool) -> None:
    """Ensure that range bounds are inclusive."""
    field = _validate({"type": "Integer", "range_start": 18, "range_end": 120}, value)

    if valid:
        assert field.errors == []
        assert field.value == int(value)
    else:
        assert field.errors == ["value must be between 18 and 120"]
        assert field.value is None


def test_open_ranges() -> None:
    field = _validate({"type": "Integer", "range_start": 5}, "4")
    assert field.errors == ["value must be greater than or equal to 5"]

    field = _validate({"type": "Integer", "range_end": 5}, "6")
    assert field.errors == ["value must be less than or equal to 5"]

    field = _validate({"type": "Integer", "range_end": 5}, "-100")
    assert field.errors == []

    field = _validate({"type": "Text", "range_start": 1}, "abc")
    assert field.errors == ["value must be a number"]


def test_fields_with_options_skip_range_checks() -> None:
    field = _validate(
        {"type": "Select", "options": OPTIONS, "range_start": 5},
        "1",
    )
    assert field.errors == []
    assert field.value == "1"


def test_multiple_accepts_scalar() -> None:
    field = _validate({"type": "Multiple", "options": OPTIONS}, "2")

    assert field.errors == []
    assert field.value == ["2"]


def test_multiple_select_accepts_list() -> None:
    field = _validate(
        {"type": "Select", "options": OPTIONS, "multiple": True}, ["1", " 3 "]
    )

    assert field.errors == []
    assert field.value == ["1", "3"]


def test_invalid_option() -> None:
    field = _validate({"type": "Multiple", "options": OPTIONS}, ["1", "9"])

    assert field.errors == ["'9' is not a valid value"]
    assert field.value is None


def test_select_rejects_multiple_values() -> None:
    field = _validate({"type": "Select", "options": OPTIONS}, ["1", "2"])

    assert field.errors == ["This field does not take multiple values"]
    assert field.value is None


def test_option_formats() -> None:
    """Ensure that options can be declared in several formats."""
    flat = Field("f", "Select", options=["a", "Apple", "b", "Banana"])
    mapping = Field("f", "Select", options={"a": "Apple", "b": "Banana"})
    dicts = Field(
        "f",
        "Select",
        options=[{"value": "a", "label": "Apple"}, {"value": "b", "label": "Banana"}],
    )

    expected = [{"value": "a", "label": "Apple"}, {"value": "b", "label": "Banana"}]
    assert flat.options == mapping.options == dicts.options == expected

    with pytest.raises(ImproperlyConfigured):
        Field("f", "Select", options=["a", "Apple", "b"])


def test_generated_options() -> None:
    assert [o["value"] for o in Field("f", "Month").options] == list(range(1, 13))
    assert [o["value"] for o in Field("f", "Hour").options] == list(range(0, 24))
    assert len(Field("f", "Weekday").options) == 7
    assert Field("f", "MonthName").options[0] == {"value": 1, "label": "January"}
    assert [
        o["value"] for o in Field("f", "IntRange", range_start=3, range_end=5).options
    ] == [3, 4, 5]

    with pytest.raises(ImproperlyConfigured):
        Field("f", "IntRange", range_start=3)


@given(value=st.text())
def test_trim_value_strips_strings(value: str) -> None:
    assert trim_value(value) == value.strip()


@given(values=st.lists(st.text(), min_size=2))
def test_trim_value_strips_sequences(values: list) -> None:
    assert trim_value(values) == [v.strip() for v in values]


def test_trim_value_collapses_sequences() -> None:
    assert trim_value([" a "]) == "a"
    assert trim_value([]) is None
    assert trim_value(None) is None
    assert trim_value(5) == 5


def test_is_blank() -> None:
    assert is_blank(None)
    assert is_blank("  ")
    assert is_blank(["", " "])
    assert not is_blank("0")
    assert not is_blank(0)
    assert not is_blank(["", "a"])


def test_password_is_never_redisplayed() -> None:
    form = Form(
        name="login",
        profile={"required": {"username": "Text", "password": "Password"}},
        init_object={"username": "reader", "password": "stored-secret"},
    )
    assert form.fif() == {"username": "reader"}

    assert form.validate({"username": "reader", "password": "secret-password"})
    assert form.value("password") == "secret-password"
    assert "password" not in form.fif()
    assert form.fif()["username"] == "reader"


def test_password_is_never_redisplayed_with_html_prefix() -> None:
    form = Form(
        name="login",
        html_prefix=True,
        profile={"required": {"username": "Text", "password": "Password"}},
    )

    assert form.validate({"login.username": "reader", "login.password": "secret-pass"})
    assert form.value("password") == "secret-pass"
    assert form.fif() == {"username": "reader"}


def test_text_lengths() -> None:
    field = _validate({"type": "Text", "size": 5}, "abcdef")
    assert field.errors == ["Please limit to 5 characters"]

    field = _validate("Password", "short")
    assert field.errors == ["Input must be at least 6 characters"]


def test_numbers() -> None:
    assert _validate("Integer", "-5").value == -5
    assert _validate("Integer", "abc").errors == ["Value must be an integer"]
    assert _validate("PosInteger", "+7").value == 7
    assert _validate("PosInteger", "-5").errors == ["Value must be a positive integer"]
    assert _validate("Money", "abc").errors == ["Value must be a real number"]


def test_email_and_url() -> None:
    assert _validate("Email", "reader@example.com").value == "reader@example.com"
    assert _validate("Email", "nope").errors == [
        "Email should be of the format someuser@example.com"
    ]

    assert _validate("URL", "https://example.com/").value == "https://example.com/"
    assert _validate("URL", "not a url").errors == ["Enter a valid URL"]


def test_boolean() -> None:
    assert _validate("Boolean", "1").value is True
    assert _validate("Boolean", "on").value is True
    assert _validate("Boolean", "0").value is False
    assert _validate("Checkbox", "false").value is False

    field = _validate("Boolean", "yes")
    assert field.format_value() == {"f": 1}


def test_date() -> None:
    field = _validate("Date", "2020-02-29")
    assert field.errors == []
    assert field.value == datetime.date(2020, 2, 29)
    assert field.format_value() == {"f": "2020-02-29"}

    field = _validate("Date", "2020-02-30")
    assert field.errors == ["Date must be in the format %Y-%m-%d"]
    assert field.value is None

    field = _validate({"type": "Date", "date_format": "%d/%m/%Y"}, "29/02/2020")
    assert field.value == datetime.date(2020, 2, 29)
    assert field.format_value() == {"f": "29/02/2020"}


def test_date_time_parts() -> None:
    """Ensure that a date and time can be entered as separate parts."""
    form = Form(name="event", profile={"required": {"when": "DateTimeDMYHM"}})

    assert form.validate(
        {
            "when.day": "4",
            "when.month": "3",
            "when.year": "2021",
            "when.hour": "5",
            "when.minute": "6",
        }
    )

    field = form._field("when")
    assert field.value == datetime.datetime(
        2021, 3, 4, 5, 6, tzinfo=datetime.timezone.utc
    )
    assert field.format_value() == {
        "when.day": 4,
        "when.month": 3,
        "when.year": 2021,
        "when.hour": 5,
        "when.minute": 6,
    }


def test_date_time_part_errors_are_attached_to_the_field() -> None:
    form = Form(name="event", profile={"required": {"when": "DateTimeDMYHM"}})

    assert not form.validate(
        {"when.day": "4", "when.month": "13", "when.year": "2021"}
    )
    field = form._field("when")
    assert field.errors == ["'13' is not a valid value"]
    assert field.value is None
    assert form.error_field_names() == ["when"]

    # Each part is validated separately.
    form.clear()
    assert not form.validate({"when.day": "30", "when.month": "2", "when.year": "2021"})
    assert form._field("when").errors == ["Invalid date"]

    # The field is required as a whole.
    form.clear()
    assert not form.validate({})
    assert form._field("when").errors == ["This field is required"]


def test_date_time_without_time() -> None:
    form = Form(name="event", profile={"optional": {"when": "DateTimeDMYHM"}})

    assert form.validate({"when.day": "1", "when.month": "1", "when.year": "2000"})
    assert form.value("when") == datetime.datetime(
        2000, 1, 1, tzinfo=datetime.timezone.utc
    )


def test_value_changed() -> None:
    options = ["a", "A", "b", "B", "c", "C"]
    profile = {"optional": {"tags": {"type": "Multiple", "options": options}}}

    form = Form(name="tags", profile=profile, init_object={"tags": ["b", "a"]})
    assert form.validate({"tags": ["a", "b"]})
    assert not form.value_changed("tags")

    form = Form(name="tags", profile=profile, init_object={"tags": ["b", "a"]})
    assert form.validate({"tags": ["a", "c"]})
    assert form.value_changed("tags")


def test_message_override(settings: Any) -> None:
    settings.FORM_PROCESSOR_MESSAGES = {"required": "Please fill this in"}

    field = _validate("Text", "", required=True)
    assert field.errors == ["Please fill this in"]


def test_validate_field_without_form() -> None:
    """Ensure that fields can be validated on their own."""
    field = Field("age", "Integer", required=True, range_start=0)

    field.set_input(" 42 ")
    assert validate_field(field)
    assert field.value == 42
    assert field.full_name == "age"
    assert field.short_name == "age"
    assert field.required_text() == "required"

    field.set_input("-1")
    assert not validate_field(field)
    assert field.errors == ["value must be greater than or equal to 0"]
    assert field.value is None


def test_dump(caplog: Any) -> None:
    caplog.set_level(logging.DEBUG, logger="form_processor")

    Field("age", "Integer").dump()

    assert "Field age: type=Integer" in caplog.text
