# -*- coding: utf-8 -*-

"""Common utilities."""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from django.utils.text import camel_case_to_spaces
from simpleeval import (
    DEFAULT_FUNCTIONS,
    DEFAULT_OPERATORS,
    EvalWithCompoundTypes,
)

# Conversion characters of printf-style formats that expect a number.
_NUMERIC_FORMAT_RE = re.compile(r"%[-+ #0]*\d*(?:\.\d+)?[diouxXeEfFgG]")


def is_blank(value: Any) -> bool:
    """Return True if the given submitted value carries no content.

    A value is blank if it's None, a string of only whitespace, or a
    sequence in which every element is blank.

    Args:
        value: A submitted value (a scalar or a sequence of scalars).

    Returns:
        bool: True if the value is blank.
    """
    if value is None:
        return True
    if isinstance(value, (list, tuple)):
        return all(is_blank(v) for v in value)
    return not str(value).strip()


def trim_value(value: Any) -> Any:
    """Strip leading and trailing whitespace from a submitted value.

    Sequences are trimmed element by element. A sequence with a single
    element collapses to that element, and an empty sequence to None.

    Args:
        value: A submitted value (a scalar or a sequence of scalars).

    Returns:
        Any: The trimmed value.
    """
    if value is None:
        return None

    values = list(value) if isinstance(value, (list, tuple)) else [value]
    values = [v.strip() if isinstance(v, str) else v for v in values]

    if not values:
        return None
    return values if len(values) > 1 else values[0]


def flatten_params(params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Convert submitted parameters into a flat dict.

    Handles Django's QueryDict (and any MultiValueDict) so that keys
    submitted more than once keep all of their values.

    Args:
        params: The submitted parameters.

    Returns:
        Dict[str, Any]: A dict mapping each key to a value or a list of
            values.
    """
    if params is None:
        return {}

    if hasattr(params, "lists"):
        return {
            key: values if len(values) > 1 else values[0]
            for key, values in params.lists()  # type: ignore
            if values
        }

    return dict(params)


def format_value(value_format: str, value: Any) -> str:
    """Apply a printf-style format to a submitted value.

    Numeric conversions receive the value as a Decimal so that text input
    such as "1234" can be formatted with "%.2f".

    Args:
        value_format: The printf-style format.
        value: The value to format.

    Returns:
        str: The formatted value.
    """
    if _NUMERIC_FORMAT_RE.search(value_format):
        try:
            value = Decimal(str(value))
        except InvalidOperation:
            pass
    return value_format % (value,)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a value to a Decimal, or None if it's not a finite number."""
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def snake_case(name: str) -> str:
    """Convert a CamelCase class name to snake_case."""
    return camel_case_to_spaces(name).replace(" ", "_")


class FormEvaluator(EvalWithCompoundTypes):
    """An evaluator subclass for evaluating profile modifier expressions."""

    OPERATORS = {
        **DEFAULT_OPERATORS.copy(),
    }

    FUNCTIONS = {
        **DEFAULT_FUNCTIONS.copy(),
        "blank": is_blank,
    }

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs = {
            **kwargs,
            "operators": self.OPERATORS,
            "functions": self.FUNCTIONS,
        }
        super().__init__(*args, **kwargs)


def evaluate_expression(
    expression: str,
    names: Optional[Mapping[str, Any]] = None,
    **kwargs: Any,
) -> Any:
    """Safely evaluate a Python expression.

    Evaluates a Python expression in a controlled environment.

    Args:
        expression: The Python expression to evaluate.
        names: A mapping of variable names and their values available to
            the expression.
        kwargs: Passed to the FormEvaluator constructor.

    Returns:
        Any: The value of the expression.
    """
    evaluator = FormEvaluator(names=names, **kwargs)
    return evaluator.eval(expression)
