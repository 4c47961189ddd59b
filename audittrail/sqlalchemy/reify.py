'''Rebuild an object as it was right after a given Version.

The state after a version is reached by starting from the newest known state
of the object and undoing every later change, newest first::

    live row (or the snapshot of a later destroy)
      - undo newest version
      - undo next newest
      ...
      - stop at the target version

A destroy version needs no walking: its object_state is the snapshot.

Reifying only issues queries against the version table and the object's own
row. The object's ``versions`` relationship is never loaded or modified.
'''
import logging
logger = logging.getLogger('audittrail.reify')

from sqlalchemy import select
from sqlalchemy.orm import class_mapper, make_transient_to_detached

from audittrail.exceptions import ReificationFailure
from .version import VersionStore, coerce_item_id


def load_live_values(session, cls, item_id, keys):
    '''Current column values of the row for item_id, or None.'''
    policy = cls.__versioned_policy__
    pk = coerce_item_id(cls, item_id)
    q = select(*[getattr(cls, key) for key in keys]).where(
            getattr(cls, policy.primary_key) == pk)
    row = session.execute(q).first()
    if row is None:
        return None
    return dict(zip(keys, row))


def _baseline(session, version, cls, keys):
    '''Starting values and the versions to undo on top of them.'''
    newer = VersionStore.all_subsequent(session, version)
    for idx, later in enumerate(newer):
        if later.is_destroy:
            return later.object_state, newer[:idx]
    values = load_live_values(session, cls, version.item_id, keys)
    if values is None:
        msg = ('%s %s has no live row and no later destroy snapshot to '
            'rebuild version %s from') % (version.item_type, version.item_id,
            version.id)
        raise ReificationFailure(msg)
    return values, newer


def _warn_unknown(version, name):
    logger.warning('reify: %s is no longer an attribute of %s, skipping '
        '(version %s)' % (name, version.item_type, version.id))


def reconstruct(session, version, cls):
    '''Attribute values of the item immediately after version.'''
    keys = cls.__versioned_policy__.attribute_keys
    if version.is_destroy:
        snapshot = version.object_state
        values = {}
        for name, value in snapshot.items():
            if name in keys:
                values[name] = value
            else:
                _warn_unknown(version, name)
        return values
    start, to_undo = _baseline(session, version, cls, keys)
    values = {}
    for name, value in start.items():
        if name in keys:
            values[name] = value
        else:
            _warn_unknown(version, name)
    for later in reversed(to_undo):
        for name, (old, new) in later.changeset.items():
            if name not in keys:
                _warn_unknown(later, name)
                continue
            values[name] = old
    return values


def reify(version, session, as_new_record=False, unset_identity=False,
        restore_metadata=False):
    '''Return an instance of the versioned class holding the state right
    after version.

    :param as_new_record: return a transient instance; adding it to a
        session INSERTs a row.
    :param unset_identity: as as_new_record but with the primary key
        cleared, producing a duplicate under a fresh identity.
    :param restore_metadata: copy context_metadata values whose keys name
        attributes of the class onto the instance.

    By default the instance is detached and keeps its identity: pass it to
    ``session.merge()`` to write the old state back over the live row.

    The instance reports is_live() False (and .version is the version it
    came from) until it is next flushed.
    '''
    cls = version.item_class
    if cls is None:
        msg = 'No versioned class registered for item_type %s' % \
                version.item_type
        raise ReificationFailure(msg)
    policy = cls.__versioned_policy__
    with session.no_autoflush:
        values = reconstruct(session, version, cls)
        if restore_metadata and version.context_metadata:
            registry = policy.builder.registry
            for name, value in version.context_metadata.items():
                if name in policy.attribute_keys:
                    values[name] = registry.decode(value)
    if values.get(policy.primary_key) is None:
        values[policy.primary_key] = coerce_item_id(cls, version.item_id)
    # only destroy snapshots can lack an attribute (skipped ones): those
    # come back as None, elsewhere skipped attributes keep the live value
    for name in policy.attribute_keys:
        values.setdefault(name, None)

    obj = class_mapper(cls).class_manager.new_instance()
    for name, value in values.items():
        setattr(obj, name, value)
    if unset_identity:
        setattr(obj, policy.primary_key, None)
    elif not as_new_record:
        make_transient_to_detached(obj)
    obj._reified_from = version
    logger.debug('reify: %s %s as of version %s' % (version.item_type,
        version.item_id, version.id))
    return obj
