"""Unit tests for parameter binding and value conversion.

Tests the public API:
- bind(values) / bind_value(value, position) - Caller values to parameters
- AttributeValue - Already-typed values
- from_attribute_value / decode_item - Typed values back to Python
"""
import datetime
import math
from decimal import Decimal

import numpy as np
import pandas as pd
import pytest
from partiqldb.binding import bind, bind_value
from partiqldb.exceptions import BindingError, DataError
from partiqldb.types import AttributeValue, TypeConverter, decode_item
from partiqldb.types import from_attribute_value


class Money:
    """Value object that knows its driver representation."""

    def __init__(self, cents):
        self.cents = cents

    def driver_value(self):
        return f'{self.cents / 100:.2f}'


class Wrapper:
    def __init__(self, inner):
        self.inner = inner

    def driver_value(self):
        return self.inner


class Broken:
    def driver_value(self):
        raise RuntimeError('no representation')


class Loop:
    def driver_value(self):
        return self


class TestBindValue:
    """Structural marshaling of plain Python values."""

    @pytest.mark.parametrize(('value', 'expected'), [
        ('alice', {'S': 'alice'}),
        (42, {'N': '42'}),
        (1.5, {'N': '1.5'}),
        (Decimal('1.10'), {'N': '1.10'}),
        (True, {'BOOL': True}),
        (None, {'NULL': True}),
        (b'\x00\x01', {'B': b'\x00\x01'}),
        (['a', 1], {'L': [{'S': 'a'}, {'N': '1'}]}),
        ({'id': '1', 'n': 2}, {'M': {'id': {'S': '1'}, 'n': {'N': '2'}}}),
        ({'x'}, {'SS': ['x']}),
        (datetime.date(2025, 1, 2), {'S': '2025-01-02'}),
        (datetime.datetime(2025, 1, 2, 3, 4, 5), {'S': '2025-01-02T03:04:05'}),
    ], ids=['str', 'int', 'float', 'decimal', 'bool', 'none', 'bytes', 'list', 'map',
            'string_set', 'date', 'datetime'])
    def test_native_values(self, value, expected):
        assert bind_value(value) == expected

    def test_nested_float(self):
        assert bind_value({'price': 0.1}) == {'M': {'price': {'N': '0.1'}}}

    @pytest.mark.parametrize('value', [float('nan'), math.inf, np.nan, pd.NA, pd.NaT])
    def test_missing_values_bind_as_null(self, value):
        assert bind_value(value) == {'NULL': True}

    def test_numpy_scalars(self):
        assert bind_value(np.int64(5)) == {'N': '5'}
        assert bind_value(np.float64(2.5)) == {'N': '2.5'}
        assert bind_value(np.bool_(True)) == {'BOOL': True}

    def test_pandas_timestamp(self):
        assert bind_value(pd.Timestamp('2025-01-02 03:04:05')) == {'S': '2025-01-02T03:04:05'}


class TestBindCapabilities:
    """Driver-value providers and already-typed values."""

    def test_attribute_value_passes_through(self):
        assert bind_value(AttributeValue('N', '7')) == {'N': '7'}
        assert bind_value(AttributeValue.from_dict({'SS': ['a', 'b']})) == {'SS': ['a', 'b']}

    def test_driver_value_resolved(self):
        assert bind_value(Money(1250)) == {'S': '12.50'}

    def test_driver_value_chain(self):
        """Providers are resolved until a plain value remains."""
        assert bind_value(Wrapper(Wrapper(AttributeValue('N', '3')))) == {'N': '3'}

    def test_driver_value_failure(self):
        with pytest.raises(BindingError) as exc_info:
            bind_value(Broken(), position=4)

        error = exc_info.value
        assert error.position == 4
        assert isinstance(error.cause, RuntimeError)
        assert isinstance(error, DataError)

    def test_driver_value_that_never_resolves(self):
        with pytest.raises(BindingError):
            bind_value(Loop())

    def test_unknown_attribute_tag(self):
        with pytest.raises(ValueError, match='unknown attribute type'):
            AttributeValue('X', '1')


class TestBind:
    """Ordered binding of a whole argument list."""

    def test_order_preserved(self):
        assert bind(['Bob', '2']) == [{'S': 'Bob'}, {'S': '2'}]

    def test_empty(self):
        assert bind([]) == []

    def test_fails_fast_at_offending_position(self):
        with pytest.raises(BindingError) as exc_info:
            bind(['ok', 1, object(), Broken()])

        assert exc_info.value.position == 2
        assert 'argument 2' in str(exc_info.value)

    def test_typed_value_nested_in_list_rejected(self):
        with pytest.raises(BindingError):
            bind([[AttributeValue('S', 'x')]])


class TestDecode:
    """Typed values back to Python."""

    @pytest.mark.parametrize(('attribute', 'expected'), [
        ({'S': 'alice'}, 'alice'),
        ({'N': '42'}, 42),
        ({'N': '2.50'}, 2.5),
        ({'BOOL': False}, False),
        ({'NULL': True}, None),
        ({'B': b'raw'}, b'raw'),
        ({'L': [{'N': '1'}, {'S': 'x'}]}, [1, 'x']),
        ({'NS': ['1', '2']}, {1, 2}),
    ], ids=['str', 'int', 'float', 'bool', 'null', 'binary', 'list', 'number_set'])
    def test_from_attribute_value(self, attribute, expected):
        assert from_attribute_value(attribute) == expected

    def test_integral_numbers_are_int(self):
        assert isinstance(from_attribute_value({'N': '10'}), int)
        assert isinstance(from_attribute_value({'N': '10.5'}), float)

    def test_decode_item(self):
        item = {'id': {'S': '1'}, 'tags': {'M': {'a': {'N': '1'}}}}
        assert decode_item(item) == {'id': '1', 'tags': {'a': 1}}


class TestTypeConverter:

    def test_plain_values_unchanged(self):
        assert TypeConverter.convert_value('x') == 'x'
        assert TypeConverter.convert_value(3) == 3

    def test_numpy_array(self):
        assert TypeConverter.convert_value(np.array([1, 2])) == [1, 2]

    def test_datetime64(self):
        value = TypeConverter.convert_value(np.datetime64('2025-01-02T03:04:05'))
        assert value == datetime.datetime(2025, 1, 2, 3, 4, 5)


if __name__ == '__main__':
    __import__('pytest').main([__file__])
