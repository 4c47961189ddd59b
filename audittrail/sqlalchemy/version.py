'''The Version domain object, its table and the store reading and writing it.

Versions are append only: a row is written once, by the VersionedListener,
inside the transaction of the change it records and never updated after.
'''
from datetime import datetime

import logging
logger = logging.getLogger('audittrail.version')

from sqlalchemy import Column, Index, Table, and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import make_transient_to_detached, object_session
from sqlalchemy.types import DateTime, Integer, String, Unicode

from audittrail.changeset import Event, decode_changeset, decode_snapshot
from audittrail.config import config
from audittrail.exceptions import RecordingFailure
from .sqla import SQLAlchemyMixin, JsonType, class_mapper


## --------------------------------------------------------
## Registry of versioned classes, keyed by item_type

_item_classes = {}


def register_item_class(item_type, cls):
    _item_classes[item_type] = cls


def item_class_for(item_type):
    '''The versioned class recorded under item_type, or None.'''
    return _item_classes.get(item_type)


def coerce_item_id(cls, item_id):
    '''Turn a stored (string) item_id back into a primary key value.'''
    if item_id is None:
        return None
    pkcol = class_mapper(cls).primary_key[0]
    try:
        python_type = pkcol.type.python_type
    except NotImplementedError:
        return item_id
    if isinstance(item_id, python_type):
        return item_id
    return python_type(item_id)


## --------------------------------------------------------
## Domain object

class Version(SQLAlchemyMixin):
    '''One recorded event on one tracked object.

    The raw JSON columns are mapped as raw_changeset and raw_object_state;
    changeset and object_state give them back decoded into python values.
    '''

    @property
    def item_class(self):
        return item_class_for(self.item_type)

    def _registry(self):
        cls = self.item_class
        policy = getattr(cls, '__versioned_policy__', None)
        if policy is None:
            return None
        return policy.builder.registry

    @property
    def changeset(self):
        return decode_changeset(self.raw_changeset, self._registry())

    @property
    def object_state(self):
        return decode_snapshot(self.raw_object_state, self._registry())

    object = object_state

    @property
    def is_create(self):
        return self.event == Event.CREATE

    @property
    def is_destroy(self):
        return self.event == Event.DESTROY

    def _session(self, session):
        session = session or object_session(self)
        if session is None:
            raise ValueError('Version %s is not attached to a session' % self.id)
        return session

    def item(self, session=None):
        '''The live object this version belongs to (None if destroyed).'''
        session = self._session(session)
        cls = self.item_class
        if cls is None:
            return None
        return session.get(cls, coerce_item_id(cls, self.item_id))

    def previous(self, session=None):
        return VersionStore.preceding(self._session(session), self)

    def next(self, session=None):
        return VersionStore.subsequent(self._session(session), self)

    def index(self, session=None):
        '''Position of this version in its item's history (0 based).'''
        return VersionStore.count_preceding(self._session(session), self)

    def reify(self, session=None, as_new_record=False, unset_identity=False,
            restore_metadata=False):
        '''Rebuild the item as it was immediately after this version.

        See audittrail.sqlalchemy.reify.reify for the options.
        '''
        from .reify import reify
        return reify(self, session=self._session(session),
                as_new_record=as_new_record, unset_identity=unset_identity,
                restore_metadata=restore_metadata)


## --------------------------------------------------------
## Tables and mapping

def make_tables(metadata, name=None):
    name = name or config['version_table']
    version_table = Table(name, metadata,
            Column('id', Integer, primary_key=True, autoincrement=True),
            Column('item_type', String(100), nullable=False),
            Column('item_id', String(64), nullable=False),
            Column('event', String(16), nullable=False),
            Column('actor', Unicode(255)),
            Column('changeset', JsonType),
            Column('object_state', JsonType),
            Column('context_metadata', JsonType),
            Column('transaction_id', String(36)),
            Column('created_at', DateTime, nullable=False, default=datetime.now),
            )
    Index('ix_%s_item' % name, version_table.c.item_type,
            version_table.c.item_id, version_table.c.created_at)
    Index('ix_%s_transaction_id' % name, version_table.c.transaction_id)
    return version_table


def setup_versions(metadata, mapper):
    '''Create the version table on metadata and map Version onto it.

    :param mapper: mapping function, e.g. ``registry().map_imperatively``.
    :return: the version table.
    '''
    version_table = make_tables(metadata)
    mapper(Version, version_table, properties={
        'raw_changeset': version_table.c.changeset,
        'raw_object_state': version_table.c.object_state,
        })
    return version_table


def version_table():
    return class_mapper(Version).local_table


def timestamp_sort_order(table=None):
    table = table if table is not None else version_table()
    return (table.c.created_at.asc(), table.c.id.asc())


## --------------------------------------------------------
## Store

class VersionStore(object):
    '''Reading and appending Version rows.

    Every method takes the session explicitly so it runs on whatever
    connection and transaction that session is currently using.
    '''

    @classmethod
    def append(self, session, version):
        '''Insert version on the session's current connection.

        This is the transaction the triggering change is being flushed in, so
        the two commit or roll back together. Any failure is raised as a
        RecordingFailure.

        Afterwards version is attached to the session as a persistent object
        with its id set.
        '''
        table = version_table()
        values = {
            'item_type': version.item_type,
            'item_id': version.item_id,
            'event': version.event,
            'actor': version.actor,
            'changeset': version.raw_changeset,
            'object_state': version.raw_object_state,
            'context_metadata': version.context_metadata,
            'transaction_id': version.transaction_id,
            'created_at': version.created_at,
            }
        try:
            result = session.connection().execute(table.insert().values(values))
        except SQLAlchemyError as exc:
            raise RecordingFailure(version.item_type, version.item_id,
                    version.event, exc) from exc
        version.id = result.inserted_primary_key[0]
        logger.debug('append: %s %s %s as version %s' % (version.event,
            version.item_type, version.item_id, version.id))
        make_transient_to_detached(version)
        session.add(version)
        return version

    @classmethod
    def _for_item(self, item_type, item_id):
        return select(Version).where(
                Version.item_type == item_type,
                Version.item_id == str(item_id))

    @classmethod
    def query(self, session, item_type, item_id):
        '''All versions of an item, oldest first.'''
        q = self._for_item(item_type, item_id).order_by(
                Version.created_at.asc(), Version.id.asc())
        return session.scalars(q).all()

    with_item_keys = query

    @classmethod
    def most_recent_before(self, session, item_type, item_id, timestamp):
        '''The version describing the item's state at timestamp.

        None if the item did not exist yet, or had already been destroyed.
        A destroy stamped exactly at timestamp counts as having happened.
        '''
        q = self._for_item(item_type, item_id).where(
                Version.created_at <= timestamp).order_by(
                Version.created_at.desc(), Version.id.desc()).limit(1)
        version = session.scalars(q).first()
        if version is None or version.is_destroy:
            return None
        return version

    @classmethod
    def _preceding_clause(self, version):
        return or_(Version.created_at < version.created_at,
                and_(Version.created_at == version.created_at,
                    Version.id < version.id))

    @classmethod
    def _subsequent_clause(self, version):
        return or_(Version.created_at > version.created_at,
                and_(Version.created_at == version.created_at,
                    Version.id > version.id))

    @classmethod
    def preceding(self, session, version):
        q = self._for_item(version.item_type, version.item_id).where(
                self._preceding_clause(version)).order_by(
                Version.created_at.desc(), Version.id.desc()).limit(1)
        return session.scalars(q).first()

    @classmethod
    def subsequent(self, session, version):
        q = self._for_item(version.item_type, version.item_id).where(
                self._subsequent_clause(version)).order_by(
                Version.created_at.asc(), Version.id.asc()).limit(1)
        return session.scalars(q).first()

    @classmethod
    def all_subsequent(self, session, version):
        '''Every version of the same item newer than version, oldest first.'''
        q = self._for_item(version.item_type, version.item_id).where(
                self._subsequent_clause(version)).order_by(
                Version.created_at.asc(), Version.id.asc())
        return session.scalars(q).all()

    @classmethod
    def count_preceding(self, session, version):
        q = select(func.count(Version.id)).where(
                Version.item_type == version.item_type,
                Version.item_id == version.item_id,
                self._preceding_clause(version))
        return session.scalar(q)

    @classmethod
    def for_transaction(self, session, transaction_id):
        q = select(Version).where(Version.transaction_id == transaction_id
                ).order_by(Version.id.asc())
        return session.scalars(q).all()

    @classmethod
    def latest(self, session, item_type, item_id):
        q = self._for_item(item_type, item_id).order_by(
                Version.created_at.desc(), Version.id.desc()).limit(1)
        return session.scalars(q).first()
