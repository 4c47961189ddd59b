'''Generic sqlalchemy code (not specifically related to audittrail).
'''
import json
import uuid

import sqlalchemy
from sqlalchemy import types
from sqlalchemy.orm import attributes, class_mapper, object_mapper
from sqlalchemy.orm import ColumnProperty


def make_uuid():
    return str(uuid.uuid4())


class SQLAlchemyMixin(object):
    def __init__(self, **kw):
        for k, v in kw.items():
            setattr(self, k, v)

    def __str__(self):
        repr = '<%s' % self.__class__.__name__
        table = sqlalchemy.orm.class_mapper(self.__class__).local_table
        state = attributes.instance_state(self)
        for col in table.c:
            # avoid triggering loads from repr
            repr += ' %s=%s' % (col.name, state.dict.get(col.key))
        repr += '>'
        return repr

    def __repr__(self):
        return self.__str__()


class JsonType(types.TypeDecorator):
    '''Store data as JSON serializing on save and unserializing on use.
    '''
    impl = types.UnicodeText
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None: # ensure we stores nulls in db not json "null"
            return None
        else:
            # ensure_ascii=False => allow unicode
            return json.dumps(value, ensure_ascii=False, sort_keys=True)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        else:
            return json.loads(value)

    def copy(self, **kw):
        return JsonType(self.impl.length)


def column_attribute_keys(mapper):
    '''Keys of the column-based mapped attributes of mapper, in table order.'''
    return [prop.key for prop in mapper.iterate_properties
        if isinstance(prop, ColumnProperty)]


def primary_key_attribute(mapper):
    '''Key of the attribute mapped to the single primary key column.'''
    pkcols = mapper.primary_key
    if len(pkcols) != 1:
        msg = 'Do not support versioning objects with multiple primary keys'
        raise ValueError(msg)
    return mapper.get_property_by_column(pkcols[0]).key


def get_object_id(obj):
    '''Return (item_type, item_id) identifying obj in the version table.'''
    obj_mapper = object_mapper(obj)
    pk = getattr(obj, primary_key_attribute(obj_mapper))
    item_type = getattr(obj.__class__, '__item_type__', obj.__class__.__name__)
    if pk is None:
        return (item_type, None)
    return (item_type, str(pk))


def get_committed_value(obj, key):
    '''Value of attribute key as it was when last loaded or flushed.'''
    hist = attributes.get_history(obj, key)
    if hist.deleted:
        return hist.deleted[0]
    if hist.unchanged:
        return hist.unchanged[0]
    if hist.added:
        return hist.added[0]
    return None


class SQLAlchemySession(object):
    '''Handle setting/getting audittrail bookkeeping on the SQLAlchemy session.

    Everything is kept in session.info so that it is cleared along with the
    session and never shared between sessions.
    '''

    TRANSACTION = 'audittrail.transaction'
    PENDING = 'audittrail.pending'

    @classmethod
    def transaction(self, session):
        '''Bookkeeping for the database transaction currently in progress.

        Created on first use and dropped when the outermost transaction
        ends.
        '''
        current = session.info.get(self.TRANSACTION)
        if current is None:
            current = {'id': make_uuid()}
            session.info[self.TRANSACTION] = current
        return current

    @classmethod
    def end_transaction(self, session):
        session.info.pop(self.TRANSACTION, None)

    @classmethod
    def set_pending(self, session, pending):
        session.info[self.PENDING] = pending

    @classmethod
    def pop_pending(self, session):
        return session.info.pop(self.PENDING, [])

