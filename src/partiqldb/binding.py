"""
Parameter binding for positional `?` markers.

Each caller value is tried against, in order:

1. a driver-value provider (an object with a callable ``driver_value()``),
   resolved and bound again with the result
2. an `AttributeValue`, passed through unchanged
3. structural marshaling of plain Python values

The first failure stops binding and raises `BindingError` for that position.
"""
import logging
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

from partiqldb.exceptions import BindingError
from partiqldb.types import AttributeValue, to_attribute_value

logger = logging.getLogger(__name__)

__all__ = ['DriverValuer', 'bind', 'bind_value']

# guards against providers that resolve to themselves
MAX_RESOLVE_DEPTH = 32


@runtime_checkable
class DriverValuer(Protocol):
    """Value that knows how to turn itself into a bindable value."""

    def driver_value(self) -> Any: ...


def bind_value(value: Any, position: int = 0) -> dict[str, Any]:
    """Bind a single value.

    Raises
        BindingError: the value cannot be represented
    """
    original = value
    depth = 0
    while isinstance(value, DriverValuer):
        depth += 1
        if depth > MAX_RESOLVE_DEPTH:
            raise BindingError(position, original, RecursionError('driver_value() does not converge'))
        try:
            value = value.driver_value()
        except Exception as exc:
            raise BindingError(position, original, exc) from exc

    if isinstance(value, AttributeValue):
        return value.to_dict()

    try:
        return to_attribute_value(value)
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise BindingError(position, original, exc) from exc


def bind(values: Sequence[Any]) -> list[dict[str, Any]]:
    """Bind ordered caller values to the statement's parameter list.

    Parameters
        values: positional values in placeholder order

    Returns
        List of typed parameters, same order as `values`
    """
    params = [bind_value(value, position) for position, value in enumerate(values)]
    logger.debug(f'Bound {len(params)} parameters')
    return params
