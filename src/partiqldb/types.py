"""
Type handling between Python values and the backend's typed union.

This module provides:
- AttributeValue: an already-typed backend value that binds unchanged
- TypeConverter: normalise NumPy/pandas scalars to plain Python values
- to_attribute_value: marshal a Python value to the typed union
- from_attribute_value: decode the typed union to Python values
"""
import datetime
import logging
import math
from collections.abc import Mapping, Set
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import numpy as np
import pandas as pd
from boto3.dynamodb.types import Binary, TypeDeserializer, TypeSerializer

logger = logging.getLogger(__name__)

__all__ = [
    'ATTRIBUTE_TAGS',
    'AttributeValue',
    'TypeConverter',
    'to_attribute_value',
    'from_attribute_value',
    'decode_item',
]

ATTRIBUTE_TAGS = frozenset({'B', 'BOOL', 'BS', 'L', 'M', 'N', 'NS', 'NULL', 'S', 'SS'})

NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


@dataclass(frozen=True, slots=True)
class AttributeValue:
    """A value already expressed in the backend's typed union.

    Examples
        AttributeValue('S', 'alice')
        AttributeValue('N', '42')
        AttributeValue.from_dict({'BOOL': True})
    """
    tag: str
    value: Any

    def __post_init__(self):
        if self.tag not in ATTRIBUTE_TAGS:
            raise ValueError(f'unknown attribute type {self.tag!r}, expected one of {sorted(ATTRIBUTE_TAGS)}')

    @classmethod
    def from_dict(cls, attribute: Mapping[str, Any]) -> 'AttributeValue':
        if len(attribute) != 1:
            raise ValueError(f'attribute value must have exactly one type tag, got {list(attribute)}')
        (tag, value), = attribute.items()
        return cls(tag, value)

    def to_dict(self) -> dict[str, Any]:
        return {self.tag: self.value}


# Type Converter - NumPy / pandas -> plain Python

def _convert_numpy_value(val: Any) -> Any:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()

    if isinstance(val, np.bool_):
        return bool(val)

    return val.item()


class TypeConverter:
    """Normalises scientific-stack scalars before marshaling.

    NaN, NaT and pandas NA become None so they bind as NULL.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a plain Python value."""
        if value is None:
            return None

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if value is pd.NaT or value is pd.NA:
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.bool_, np.datetime64)):
            return _convert_numpy_value(value)

        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()

        if isinstance(value, np.ndarray):
            return [TypeConverter.convert_value(v) for v in value.tolist()]

        return value


# Marshaling - Python -> typed union

def _prepare(value: Any) -> Any:
    """Recursively turn a Python value into something TypeSerializer accepts."""
    value = TypeConverter.convert_value(value)

    if isinstance(value, AttributeValue):
        raise TypeError('typed attribute values cannot be nested in native collections')
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, datetime.datetime | datetime.date | datetime.time):
        return value.isoformat()
    if isinstance(value, bytearray | memoryview):
        return bytes(value)
    if isinstance(value, Mapping):
        return {str(k): _prepare(v) for k, v in value.items()}
    if isinstance(value, Set):
        return {_prepare(v) for v in value}
    if isinstance(value, list | tuple):
        return [_prepare(v) for v in value]
    return value


def to_attribute_value(value: Any) -> dict[str, Any]:
    """Marshal a Python value to the typed union.

    Raises
        TypeError: the value (or a nested value) has no backend representation
    """
    if isinstance(value, AttributeValue):
        return value.to_dict()
    return _serializer.serialize(_prepare(value))


# Decoding - typed union -> Python

def _from_number(number: Decimal) -> int | float:
    if number == number.to_integral_value():
        return int(number)
    return float(number)


def _decode(value: Any) -> Any:
    if isinstance(value, Decimal):
        return _from_number(value)
    if isinstance(value, Binary):
        return value.value
    if isinstance(value, dict):
        return {k: _decode(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_decode(v) for v in value]
    if isinstance(value, set):
        return {_decode(v) for v in value}
    return value


def from_attribute_value(attribute: Mapping[str, Any]) -> Any:
    """Decode one typed-union value to a Python value.

    Numbers decode to int when integral and float otherwise.
    """
    return _decode(_deserializer.deserialize(attribute))


def decode_item(item: Mapping[str, Mapping[str, Any]]) -> dict[str, Any]:
    """Decode a whole backend record."""
    return {name: from_attribute_value(attribute) for name, attribute in item.items()}
