import json
import uuid
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from audittrail.serializers import CodecRegistry, make_default_registry


class Money(object):
    def __init__(self, cents):
        self.cents = cents

    def __eq__(self, other):
        return isinstance(other, Money) and other.cents == self.cents


class TestDefaultRegistry:
    registry = make_default_registry()

    def test_native_passthrough(self):
        for value in ('abc', 1, 1.5, True, None):
            assert self.registry.encode(value) == value
            assert self.registry.decode(value) == value

    def test_typed_values(self):
        values = [
            datetime(2021, 3, 4, 5, 6, 7, 890),
            date(2021, 3, 4),
            time(5, 6, 7),
            timedelta(days=1, seconds=3),
            Decimal('3.14'),
            uuid.UUID('12345678-1234-5678-1234-567812345678'),
            b'\x00\xffdata',
            set([1, 2, 3]),
            ]
        for value in values:
            encoded = self.registry.encode(value)
            # must survive a trip through the JSON column
            encoded = json.loads(json.dumps(encoded))
            out = self.registry.decode(encoded)
            assert out == value, (value, out)
            assert type(out) is type(value)

    def test_datetime_not_taken_for_date(self):
        encoded = self.registry.encode(datetime(2021, 3, 4, 5, 6))
        assert encoded['__type__'] == 'datetime'

    def test_nested(self):
        value = {'when': date(2020, 1, 1), 'items': [Decimal('1'), 'x']}
        encoded = self.registry.encode(value)
        assert encoded == {
            'when': {'__type__': 'date', 'value': '2020-01-01'},
            'items': [{'__type__': 'decimal', 'value': '1'}, 'x'],
            }
        assert self.registry.decode(encoded) == value

    def test_set_members_encoded(self):
        value = set([date(2020, 1, 1), date(2021, 1, 1)])
        encoded = self.registry.encode(value)
        assert encoded == {'__type__': 'set', 'value': [
            {'__type__': 'date', 'value': '2020-01-01'},
            {'__type__': 'date', 'value': '2021-01-01'},
            ]}
        out = self.registry.decode(json.loads(json.dumps(encoded)))
        assert out == value

    def test_tuple_kept(self):
        value = (1, Decimal('2.5'), 'x')
        encoded = json.loads(json.dumps(self.registry.encode(value)))
        out = self.registry.decode(encoded)
        assert out == value
        assert type(out) is tuple

    def test_frozenset_of_mixed_types(self):
        value = frozenset([2, 'b', 1, 'a'])
        encoded = self.registry.encode(value)
        assert encoded['value'] == [1, 2, 'a', 'b']
        assert self.registry.decode(encoded) == value

    def test_list_stays_list(self):
        value = [date(2020, 1, 1), (1, 2)]
        out = self.registry.decode(self.registry.encode(value))
        assert out == value
        assert type(out[1]) is tuple

    def test_unregistered_passthrough(self):
        money = Money(5)
        assert self.registry.encode(money) is money

    def test_unknown_tag_left_alone(self):
        value = {'__type__': 'nothing-registered', 'value': 1}
        assert self.registry.decode(value) == value


class TestCustomCodec:
    def test_register(self):
        registry = CodecRegistry()
        registry.register(Money, 'money', lambda m: m.cents, Money)
        encoded = registry.encode(Money(250))
        assert encoded == {'__type__': 'money', 'value': 250}
        assert registry.decode(encoded) == Money(250)

    def test_subclass_uses_base_codec(self):
        class Euros(Money):
            pass
        registry = CodecRegistry()
        registry.register(Money, 'money', lambda m: m.cents, Money)
        assert registry.codec_for(Euros(1)).name == 'money'

    def test_copy_is_independent(self):
        base = make_default_registry()
        other = base.copy()
        other.register(Money, 'money', lambda m: m.cents, Money)
        assert other.codec_for(Money(1)) is not None
        assert base.codec_for(Money(1)) is None

    def test_unregister(self):
        registry = make_default_registry()
        registry.unregister(Decimal)
        assert registry.encode(Decimal('1')) == Decimal('1')
