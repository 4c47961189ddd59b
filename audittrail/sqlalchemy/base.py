'''Making mapped classes versioned.

A class takes part in versioning by composing VersionedObjectMixin and being
registered with make_versioned() once it has been mapped::

    class Widget(VersionedObjectMixin, SQLAlchemyMixin):
        pass

    mapper_registry.map_imperatively(Widget, widget_table)
    make_versioned(Widget, ignore=['hit_count'], associations=['wotsits'])

make_versioned checks the options against the mapper straight away so any
mistake surfaces at startup rather than on the first write.
'''
import contextlib
import warnings
from datetime import datetime

import logging
logger = logging.getLogger('audittrail')

from sqlalchemy import String, and_, cast, update
from sqlalchemy.exc import NoInspectionAvailable
from sqlalchemy.orm import RelationshipDirection, object_session, relationship
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.orm.exc import UnmappedClassError

from audittrail import request
from audittrail.changeset import ChangesetBuilder, Event
from audittrail.config import config
from audittrail.exceptions import PolicyConfigurationError, RecordingFailure
from .sqla import class_mapper, column_attribute_keys, primary_key_attribute
from .sqla import get_object_id, get_committed_value, SQLAlchemySession
from .version import Version, VersionStore, register_item_class
from .version import timestamp_sort_order, version_table


def is_versioned(obj):
    return getattr(obj, '__versioned_policy__', None) is not None


def versioned_objects(iter):
    for obj in iter:
        if is_versioned(obj):
            yield obj


class VersionPolicy(object):
    '''Everything make_versioned was told about one class.'''

    def __init__(self, cls, item_type, builder, on, if_, unless, meta,
            associations, timestamp_attribute):
        self.cls = cls
        self.item_type = item_type
        self.builder = builder
        self.on = frozenset(on)
        self.if_ = if_
        self.unless = unless
        self.meta = dict(meta or {})
        self.associations = list(associations or [])
        self.timestamp_attribute = timestamp_attribute
        mapper = class_mapper(cls)
        self.attribute_keys = column_attribute_keys(mapper)
        self.primary_key = primary_key_attribute(mapper)

    def __repr__(self):
        return '<VersionPolicy %s on=%s>' % (self.item_type, sorted(self.on))

    def should_record(self, obj, event):
        if not config['enabled']:
            return False
        if not request.is_enabled_for_model(type(obj)):
            return False
        if event not in self.on:
            return False
        if self.if_ is not None and not self.if_(obj):
            return False
        if self.unless is not None and self.unless(obj):
            return False
        return True

    def timestamp_for(self, obj, state_dict=None):
        '''The entity's own last-modified time, or now if it has none.'''
        if self.timestamp_attribute is not None:
            if state_dict is None:
                value = getattr(obj, self.timestamp_attribute, None)
            else:
                value = state_dict.get(self.timestamp_attribute)
            if isinstance(value, datetime):
                return value
        return datetime.now()

    def evaluate_meta(self, obj):
        out = {}
        for key, value in self.meta.items():
            if callable(value):
                value = value(obj)
            out[key] = value
        return out

    def build_version(self, session, obj, event, changeset=None,
            object_state=None, created_at=None, extra_metadata=None):
        item_type, item_id = get_object_id(obj)
        actor = request.current_actor()
        if actor is not None:
            actor = str(actor)[:config['actor_max_length']]
        metadata = request.current_metadata()
        metadata.update(self.evaluate_meta(obj))
        if extra_metadata:
            metadata.update(extra_metadata)
        return Version(
            item_type=item_type,
            item_id=item_id,
            event=event,
            actor=actor,
            raw_changeset=changeset,
            raw_object_state=object_state,
            context_metadata=self.builder.registry.encode(metadata) or None,
            transaction_id=SQLAlchemySession.transaction(session)['id'],
            created_at=created_at or datetime.now(),
            )

    def record(self, session, obj, event, changeset=None, object_state=None,
            created_at=None, extra_metadata=None):
        '''Build and append a Version for obj, and hand it to obj.'''
        try:
            version = self.build_version(session, obj, event,
                    changeset=changeset, object_state=object_state,
                    created_at=created_at, extra_metadata=extra_metadata)
        except (TypeError, ValueError) as exc:
            item_type, item_id = get_object_id(obj)
            raise RecordingFailure(item_type, item_id, event, exc) from exc
        VersionStore.append(session, version)
        obj._last_version = version
        return version


def _validate_associations(mapper, names):
    for name in names or ():
        prop = mapper.relationships.get(name)
        if prop is None:
            msg = 'associations: %s is not a relationship of %s' % (name,
                    mapper.class_.__name__)
            raise PolicyConfigurationError(msg)
        if prop.direction is not RelationshipDirection.ONETOMANY:
            msg = ('associations: %s must be a one-to-many or one-to-one '
                'relationship owned by %s') % (name, mapper.class_.__name__)
            raise PolicyConfigurationError(msg)


def make_versioned(cls, only=None, ignore=None, skip=None, on=None, if_=None,
        unless=None, meta=None, associations=None, item_type=None,
        timestamp_attribute=None, registry=None, versions_name='versions'):
    '''Register the mapped class cls for versioning.

    :param only, ignore, skip: attribute filters, see ChangesetBuilder.
    :param on: events to record (default: create, update and destroy).
    :param if_, unless: predicates called with the object; a version is only
        recorded when if_ is true and unless is false.
    :param meta: extra values stored in context_metadata of each version;
        callables are called with the object.
    :param associations: names of relationships whose members get a version
        when they are attached to or detached from an object of this class.
    :param item_type: name versions are stored under (default: class name).
    :param timestamp_attribute: attribute holding the object's last-modified
        time (default: config['timestamp_attribute'] if the class has it).
    :param registry: codec registry for attribute values.
    :param versions_name: name of the relationship listing the versions.

    :return: the VersionPolicy.
    '''
    if not issubclass(cls, VersionedObjectMixin):
        msg = '%s must subclass VersionedObjectMixin' % cls.__name__
        raise PolicyConfigurationError(msg)
    try:
        mapper = class_mapper(cls)
    except (UnmappedClassError, NoInspectionAvailable):
        raise PolicyConfigurationError('%s is not mapped' % cls.__name__)
    try:
        vt = version_table()
    except (UnmappedClassError, NoInspectionAvailable):
        raise PolicyConfigurationError(
            'Version is not mapped: call setup_versions() first')
    try:
        primary_key_attribute(mapper)
    except ValueError as exc:
        raise PolicyConfigurationError(str(exc))

    keys = column_attribute_keys(mapper)
    builder = ChangesetBuilder(only=only, ignore=ignore, skip=skip,
            registry=registry)
    builder.validate(keys)

    on = tuple(on) if on is not None else Event.ALL
    unknown = set(on) - set(Event.ALL)
    if unknown:
        msg = 'on: unknown events %s' % ', '.join(sorted(unknown))
        raise PolicyConfigurationError(msg)
    for label, predicate in (('if_', if_), ('unless', unless)):
        if predicate is not None and not callable(predicate):
            raise PolicyConfigurationError('%s must be callable' % label)
    _validate_associations(mapper, associations)

    if timestamp_attribute is None:
        default = config['timestamp_attribute']
        timestamp_attribute = default if default in keys else None
    elif timestamp_attribute not in keys:
        msg = 'timestamp_attribute %s is not an attribute of %s' % (
                timestamp_attribute, cls.__name__)
        raise PolicyConfigurationError(msg)

    item_type = item_type or cls.__name__
    policy = VersionPolicy(cls, item_type, builder, on, if_, unless, meta,
            associations, timestamp_attribute)
    cls.__versioned_policy__ = policy
    cls.__item_type__ = item_type
    register_item_class(item_type, cls)

    if versions_name and versions_name not in mapper.attrs:
        pkcol = mapper.primary_key[0]
        mapper.add_property(versions_name, relationship(Version,
            primaryjoin=and_(vt.c.item_type == item_type,
                vt.c.item_id == cast(pkcol, String)),
            foreign_keys=[vt.c.item_id],
            viewonly=True,
            order_by=list(timestamp_sort_order(vt)),
            ))
    logger.debug('make_versioned: %s' % policy)
    return policy


class VersionedObjectMixin(object):
    '''Capabilities of a versioned domain object.

    The versions themselves are available as the ``versions`` relationship
    added by make_versioned.
    '''

    @property
    def version(self):
        '''The Version this in-memory object last produced or was reified from.
        '''
        reified = self.__dict__.get('_reified_from')
        if reified is not None:
            return reified
        return self.__dict__.get('_last_version')

    def is_live(self):
        '''False for objects produced by Version.reify() until next saved.'''
        return self.__dict__.get('_reified_from') is None

    def _session(self, session):
        session = session or object_session(self)
        if session is None:
            raise ValueError('%r is not attached to a session' % self)
        return session

    def originator(self, session=None):
        '''Actor responsible for the state this object is in.'''
        if not self.is_live():
            return self._reified_from.actor
        item_type, item_id = get_object_id(self)
        if item_id is None:
            return None
        latest = VersionStore.latest(self._session(session), item_type, item_id)
        return latest.actor if latest is not None else None

    def version_at(self, timestamp, session=None):
        '''This object as it was at timestamp.

        Returns self if nothing has changed since, None if it did not exist
        or had been destroyed at that time, otherwise a reified copy.
        '''
        session = self._session(session)
        item_type, item_id = get_object_id(self)
        version = VersionStore.most_recent_before(session, item_type, item_id,
                timestamp)
        if version is None:
            return None
        if VersionStore.subsequent(session, version) is None and \
                self.is_live():
            return self
        return version.reify(session)

    @classmethod
    @contextlib.contextmanager
    def without_versioning(cls):
        '''Record nothing for this class inside the block.'''
        with request.without_versioning(cls):
            yield

    @classmethod
    @contextlib.contextmanager
    def whodunnit(cls, actor):
        '''Deprecated: use audittrail.request.scope(actor=actor).'''
        warnings.warn('whodunnit() is deprecated, use request.scope(actor=...)',
                DeprecationWarning, stacklevel=3)
        with request.scope(actor=actor):
            yield

    def touch(self, timestamp=None):
        '''Bump the last-modified time so the next flush records a version.'''
        policy = self.__versioned_policy__
        if policy.timestamp_attribute is None:
            msg = '%s has no timestamp attribute to touch' % type(self).__name__
            raise ValueError(msg)
        setattr(self, policy.timestamp_attribute, timestamp or datetime.now())

    def touch_with_version(self):
        '''Deprecated: use touch().'''
        warnings.warn('touch_with_version() is deprecated, use touch()',
                DeprecationWarning, stacklevel=2)
        self.touch()

    def update_columns(self, **values):
        '''Write values straight to the row, skipping the flush, and record
        an update version for them stamped with the current time.

        The timestamp attribute, unless given, is set to that same time so
        the row, this object and the version agree.
        '''
        session = self._session(None)
        policy = self.__versioned_policy__
        mapper = class_mapper(type(self))
        unknown = set(values) - set(policy.attribute_keys)
        if unknown:
            raise ValueError('Unknown attributes: %s' % ', '.join(
                sorted(unknown)))
        given = dict(values)
        stamp = policy.timestamp_attribute
        if stamp is not None and stamp not in values:
            values[stamp] = datetime.now()
        before = dict((key, get_committed_value(self, key)) for key in values)
        pkcol = mapper.primary_key[0]
        column_values = dict(
            (mapper.get_property(key).columns[0].key, value)
            for key, value in values.items())
        pk = getattr(self, policy.primary_key)
        session.execute(update(mapper.local_table).where(pkcol == pk).values(
            column_values))
        for key, value in values.items():
            set_committed_value(self, key, value)
        if not policy.should_record(self, Event.UPDATE):
            return None
        try:
            if not policy.builder.diff(before, given):
                return None
            changeset = policy.builder.for_update(before, values)
        except (TypeError, ValueError) as exc:
            item_type, item_id = get_object_id(self)
            raise RecordingFailure(item_type, item_id, Event.UPDATE, exc) \
                    from exc
        return policy.record(session, self, Event.UPDATE, changeset=changeset,
                created_at=policy.timestamp_for(self))
