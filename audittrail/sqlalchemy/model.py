"""Versioning (change capture) for sqlalchemy model objects.

Based partially on:

http://www.sqlalchemy.org/trac/browser/examples/versioning/history_meta.py
"""
import logging
logger = logging.getLogger('audittrail')

from sqlalchemy import event, select
from sqlalchemy.orm import attributes

from audittrail.changeset import Event
from audittrail.exceptions import RecordingFailure
from .associations import AssociationTracker
from .base import versioned_objects
from .sqla import get_committed_value, get_object_id, SQLAlchemySession


class PendingVersion(object):
    '''Progress of one object through a flush.

    idle -> pending_create | pending_update | pending_destroy -> recorded
    with skipped as the alternative end state when nothing is to be written.
    '''
    IDLE = 'idle'
    PENDING_CREATE = 'pending_create'
    PENDING_UPDATE = 'pending_update'
    PENDING_DESTROY = 'pending_destroy'
    RECORDED = 'recorded'
    SKIPPED = 'skipped'

    _pending_for = {
        Event.CREATE: PENDING_CREATE,
        Event.UPDATE: PENDING_UPDATE,
        Event.DESTROY: PENDING_DESTROY,
        }
    _transitions = {
        IDLE: (PENDING_CREATE, PENDING_UPDATE, PENDING_DESTROY, SKIPPED),
        PENDING_CREATE: (RECORDED, SKIPPED),
        PENDING_UPDATE: (RECORDED, SKIPPED),
        PENDING_DESTROY: (RECORDED, SKIPPED),
        }

    def __init__(self, obj, event):
        self.obj = obj
        self.event = event
        self.state = self.IDLE
        self.changes = None
        self.object_state = None
        # committed values and the keys the application set, taken before
        # the flush for updates
        self.before = None
        self.modified = ()
        self.version = None

    def advance(self, new_state):
        allowed = self._transitions.get(self.state, ())
        if new_state not in allowed:
            msg = 'Invalid versioning transition %s -> %s for %r' % (
                    self.state, new_state, self.obj)
            raise RuntimeError(msg)
        self.state = new_state

    def begin(self):
        self.advance(self._pending_for[self.event])

    @property
    def is_pending(self):
        return self.state in self._pending_for.values()

    def __repr__(self):
        return '<PendingVersion %s %s %r>' % (self.event, self.state, self.obj)


def _load_committed_row(session, obj, keys):
    '''Read the given attributes of obj's row as currently in the database.'''
    cls = type(obj)
    policy = cls.__versioned_policy__
    pk = attributes.instance_state(obj).identity[0]
    q = select(*[getattr(cls, key) for key in keys]).where(
            getattr(cls, policy.primary_key) == pk)
    row = session.execute(q).first()
    if row is None:
        return {}
    return dict(zip(keys, row))


def committed_values(session, obj):
    '''Values of obj's attributes as stored before the coming flush.

    Attributes that are not loaded, or were changed without their previous
    value ever being loaded (typically after expire on commit), are read
    from the database row.

    :return: (values, keys the application has set).
    '''
    policy = obj.__versioned_policy__
    before, modified, unknown = {}, set(), []
    for key in policy.attribute_keys:
        hist = attributes.get_history(obj, key,
                passive=attributes.PASSIVE_NO_INITIALIZE)
        if hist.added:
            modified.add(key)
        if hist.deleted:
            before[key] = hist.deleted[0]
        elif hist.unchanged:
            before[key] = hist.unchanged[0]
        else:
            unknown.append(key)
    if unknown:
        before.update(_load_committed_row(session, obj, unknown))
    return before, modified


def compute_update_changes(obj, before):
    '''Notable {name: [previous, new]} changes of obj since before.

    Meant to run after the flush, once foreign keys have been synchronised
    and column defaults applied. Attributes that are still unloaded kept
    their previous value.
    '''
    policy = obj.__versioned_policy__
    state_dict = attributes.instance_state(obj).dict
    after = dict((key, state_dict.get(key, before.get(key)))
        for key in policy.attribute_keys)
    return policy.builder.diff(before, after)


class VersionedListener(object):
    '''Record a Version for each change to a versioned object.

    Notes
    =====

    Work is split between before_flush and after_flush:

    * before_flush sees exactly the changes the application made, with
      attribute history intact, so it decides which objects take part,
      takes the committed values of updated objects and the snapshots of
      destroyed ones.
    * after_flush runs once primary keys, foreign keys set through
      relationships and python side defaults have been assigned, so create
      and update changesets are computed and all Versions are written there,
      on the flush's own connection.

    Versions are thus part of the same transaction as the changes they
    record: they are committed or rolled back with them.

    An object whose only change is the link to an owner that tracks it as an
    association is left to the AssociationTracker, which records the same
    change with the owner's details attached.
    '''

    def __init__(self, tracker=None):
        self.tracker = tracker or AssociationTracker()

    def install(self, target):
        '''Listen on a Session class, sessionmaker or Session instance.'''
        event.listen(target, 'before_flush', self.before_flush)
        event.listen(target, 'after_flush', self.after_flush)
        event.listen(target, 'after_transaction_end',
                self.after_transaction_end)
        return target

    def uninstall(self, target):
        event.remove(target, 'before_flush', self.before_flush)
        event.remove(target, 'after_flush', self.after_flush)
        event.remove(target, 'after_transaction_end',
                self.after_transaction_end)

    def _entry(self, obj, event_name):
        entry = PendingVersion(obj, event_name)
        if obj.__versioned_policy__.should_record(obj, event_name):
            entry.begin()
        else:
            logger.debug('not recording %s of %r' % (event_name, obj))
            entry.advance(PendingVersion.SKIPPED)
        return entry

    def before_flush(self, session, flush_context, instances):
        entries = []
        associations = []
        flushed = []
        for obj in versioned_objects(session.new):
            entries.append(self._entry(obj, Event.CREATE))
            flushed.append(obj)
        for obj in versioned_objects(session.dirty):
            flushed.append(obj)
            entry = self._entry(obj, Event.UPDATE)
            if entry.is_pending:
                entry.before, entry.modified = committed_values(session, obj)
            entries.append(entry)
            associations.extend(self.tracker.collect(session, obj,
                Event.UPDATE))
        for obj in versioned_objects(session.deleted):
            entry = self._entry(obj, Event.DESTROY)
            if entry.is_pending:
                self._prepare_destroy(entry)
            entries.append(entry)
            associations.extend(self.tracker.collect(session, obj,
                Event.DESTROY))
        SQLAlchemySession.set_pending(session, {
            'entries': entries,
            'associations': associations,
            'flushed': flushed,
            })

    def _prepare_destroy(self, entry):
        obj = entry.obj
        policy = obj.__versioned_policy__
        snapshot = dict((key, get_committed_value(obj, key))
            for key in policy.attribute_keys)
        entry.object_state = policy.builder.snapshot(snapshot)

    def after_flush(self, session, flush_context):
        pending = SQLAlchemySession.pop_pending(session)
        if not pending:
            return
        linked = {}
        for change in pending['associations']:
            linked.setdefault(id(change.child), set()).update(change.keys)
        recorded = set()
        for entry in pending['entries']:
            if entry.is_pending and entry.event == Event.UPDATE:
                self._finish_update(entry, linked.get(id(entry.obj), set()))
            if entry.is_pending:
                self._record(session, entry)
                recorded.add((entry.version.item_type, entry.version.item_id))
        for obj in pending['flushed']:
            obj.__dict__.pop('_reified_from', None)
        self.tracker.record(session, pending['associations'], recorded)

    def _finish_update(self, entry, association_keys):
        obj = entry.obj
        policy = obj.__versioned_policy__
        try:
            entry.changes = compute_update_changes(obj, entry.before)
        except (TypeError, ValueError) as exc:
            item_type, item_id = get_object_id(obj)
            raise RecordingFailure(item_type, item_id, Event.UPDATE, exc) \
                    from exc
        # a timestamp bumped by an onupdate default goes along with other
        # changes but is no reason for a version on its own
        own = set(entry.changes) - association_keys
        if policy.timestamp_attribute not in entry.modified:
            own.discard(policy.timestamp_attribute)
        if not own:
            logger.debug('after_flush: no notable change to %r' % obj)
            entry.advance(PendingVersion.SKIPPED)

    def _record(self, session, entry):
        obj = entry.obj
        policy = obj.__versioned_policy__
        state_dict = attributes.instance_state(obj).dict
        changeset = None
        created_at = None
        try:
            if entry.event == Event.CREATE:
                values = dict((key, state_dict.get(key))
                    for key in policy.attribute_keys)
                changeset = policy.builder.for_create(values)
                created_at = policy.timestamp_for(obj, state_dict)
            elif entry.event == Event.UPDATE:
                changeset = policy.builder.encode_changes(entry.changes)
                created_at = policy.timestamp_for(obj, state_dict)
        except (TypeError, ValueError) as exc:
            item_type, item_id = get_object_id(obj)
            raise RecordingFailure(item_type, item_id, entry.event, exc) \
                    from exc
        entry.version = policy.record(session, obj, entry.event,
                changeset=changeset, object_state=entry.object_state,
                created_at=created_at)
        entry.advance(PendingVersion.RECORDED)
        logger.debug('after_flush: recorded %s' % entry)

    def after_transaction_end(self, session, transaction):
        if transaction.parent is None:
            SQLAlchemySession.end_transaction(session)


def versioned_session(session_factory, listener=None):
    '''Install a VersionedListener on session_factory and return it.'''
    listener = listener or VersionedListener()
    listener.install(session_factory)
    return session_factory
