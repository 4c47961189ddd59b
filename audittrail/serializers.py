'''Typed codecs for attribute values stored in changesets.

Values in a changeset end up in a JSON column, so anything that is not
natively representable in JSON is wrapped as::

    {"__type__": <codec name>, "value": <encoded value>}

and turned back into the original type on the way out. Unregistered types
pass through untouched and are left for the JSON layer to accept or reject.
'''
import base64
import datetime
import decimal
import uuid

TYPE_KEY = '__type__'
VALUE_KEY = 'value'

_json_native = (str, int, float, bool, type(None))


class Codec(object):
    '''A named pair of functions converting one python type to and from a
    JSON representable value.

    A nested codec produces (and is handed back) a container whose members
    go through the registry themselves.
    '''

    def __init__(self, name, type_, encode, decode, nested=False):
        self.name = name
        self.type = type_
        self.encode = encode
        self.decode = decode
        self.nested = nested

    def __repr__(self):
        return '<Codec %s %s>' % (self.name, self.type.__name__)


class CodecRegistry(object):
    '''Map python types to codecs.

    Lookup follows the value's MRO so a codec registered for a base class
    covers its subclasses, unless a subclass has one of its own (which is how
    datetime wins over date).
    '''

    def __init__(self):
        self._by_type = {}
        self._by_name = {}

    def register(self, type_, name, encode, decode, nested=False):
        codec = Codec(name, type_, encode, decode, nested=nested)
        self._by_type[type_] = codec
        self._by_name[name] = codec
        return codec

    def unregister(self, type_):
        codec = self._by_type.pop(type_)
        del self._by_name[codec.name]

    def codec_for(self, value):
        for klass in type(value).__mro__:
            codec = self._by_type.get(klass)
            if codec is not None:
                return codec
        return None

    def encode(self, value):
        # exact type check: subclasses of str/int (enums etc.) may have codecs
        if type(value) in _json_native:
            return value
        if type(value) is list:
            return [self.encode(item) for item in value]
        if isinstance(value, dict) and TYPE_KEY not in value:
            return dict((key, self.encode(item)) for key, item in value.items())
        codec = self.codec_for(value)
        if codec is None:
            return value
        encoded = codec.encode(value)
        if codec.nested:
            encoded = self.encode(encoded)
        return {TYPE_KEY: codec.name, VALUE_KEY: encoded}

    def decode(self, value):
        if isinstance(value, list):
            return [self.decode(item) for item in value]
        if isinstance(value, dict):
            name = value.get(TYPE_KEY)
            if name is not None and name in self._by_name:
                codec = self._by_name[name]
                encoded = value[VALUE_KEY]
                if codec.nested:
                    encoded = self.decode(encoded)
                return codec.decode(encoded)
            return dict((key, self.decode(item)) for key, item in value.items())
        return value

    def copy(self):
        other = CodecRegistry()
        other._by_type = dict(self._by_type)
        other._by_name = dict(self._by_name)
        return other


def _parse_time(value):
    return datetime.time.fromisoformat(value)


def _sort_key(item):
    # members of one type sort naturally, mixed types group by type name
    return (type(item).__name__, item)


def make_default_registry():
    registry = CodecRegistry()
    registry.register(datetime.datetime, 'datetime',
            lambda v: v.isoformat(), datetime.datetime.fromisoformat)
    registry.register(datetime.date, 'date',
            lambda v: v.isoformat(), datetime.date.fromisoformat)
    registry.register(datetime.time, 'time',
            lambda v: v.isoformat(), _parse_time)
    registry.register(datetime.timedelta, 'timedelta',
            lambda v: v.total_seconds(),
            lambda v: datetime.timedelta(seconds=v))
    registry.register(decimal.Decimal, 'decimal', str, decimal.Decimal)
    registry.register(uuid.UUID, 'uuid', str, uuid.UUID)
    registry.register(bytes, 'bytes',
            lambda v: base64.b64encode(v).decode('ascii'), base64.b64decode)
    registry.register(tuple, 'tuple', list, tuple, nested=True)
    registry.register(set, 'set',
            lambda v: sorted(v, key=_sort_key), set, nested=True)
    registry.register(frozenset, 'frozenset',
            lambda v: sorted(v, key=_sort_key), frozenset, nested=True)
    return registry


default_registry = make_default_registry()


def register(type_, name, encode, decode, nested=False):
    '''Register a codec on the default registry.'''
    return default_registry.register(type_, name, encode, decode,
            nested=nested)
