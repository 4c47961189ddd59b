'''Versions for children attached to or detached from a versioned owner.

When an owner declared with ``associations=['wotsits']`` is updated or
destroyed, each affected member of ``wotsits`` gets an update version
recording the change to its foreign key, attributed to the owner's event
through the version's context_metadata::

    {'association': {'name': 'wotsits', 'owner_type': 'Widget',
                     'owner_id': '1', 'owner_event': 'update'}}

A child that gets a version of its own in the same flush (because it was
also changed directly) is left alone: that version carries the foreign key
change too.
'''
import logging
logger = logging.getLogger('audittrail.associations')

from sqlalchemy.orm import attributes, class_mapper

from audittrail.changeset import Event
from .base import is_versioned
from .sqla import get_committed_value, get_object_id


class AssociationChange(object):
    '''A child whose link to an owner may change in the current flush.'''

    def __init__(self, child, name, owner_type, owner_id, owner_event,
            keys, before):
        self.child = child
        self.name = name
        self.owner_type = owner_type
        self.owner_id = owner_id
        self.owner_event = owner_event
        # foreign key attributes of the child holding the link
        self.keys = keys
        self.before = before

    def metadata(self):
        return {'association': {
            'name': self.name,
            'owner_type': self.owner_type,
            'owner_id': self.owner_id,
            'owner_event': self.owner_event,
            }}

    def __repr__(self):
        return '<AssociationChange %s.%s %r>' % (self.owner_type, self.name,
                self.child)


def foreign_key_attributes(prop, child):
    '''Keys of the child attributes that hold the link described by prop.'''
    child_mapper = class_mapper(type(child))
    keys = []
    for local, remote in prop.local_remote_pairs:
        keys.append(child_mapper.get_property_by_column(remote).key)
    return keys


class AssociationTracker(object):

    def _children(self, owner, name, event):
        if event == Event.DESTROY:
            value = getattr(owner, name)
            if value is None:
                return []
            if prop_is_scalar(owner, name):
                return [value]
            return list(value)
        hist = attributes.get_history(owner, name,
                passive=attributes.PASSIVE_NO_INITIALIZE)
        return list(hist.added or ()) + list(hist.deleted or ())

    def collect(self, session, owner, event):
        '''AssociationChanges for the configured associations of owner.

        Called before the flush so the children's foreign keys still hold
        their previous values.
        '''
        policy = owner.__versioned_policy__
        if not policy.associations:
            return []
        owner_type, owner_id = get_object_id(owner)
        mapper = class_mapper(type(owner))
        out = []
        seen = set()
        with session.no_autoflush:
            for name in policy.associations:
                prop = mapper.relationships[name]
                for child in self._children(owner, name, event):
                    if child is None or id(child) in seen:
                        continue
                    seen.add(id(child))
                    if not is_versioned(child):
                        continue
                    if child in session.new or child in session.deleted:
                        continue
                    keys = foreign_key_attributes(prop, child)
                    tracked = list(keys)
                    timestamp = child.__versioned_policy__.timestamp_attribute
                    if timestamp is not None:
                        tracked.append(timestamp)
                    before = dict((key, get_committed_value(child, key))
                        for key in tracked)
                    out.append(AssociationChange(child, name, owner_type,
                        owner_id, event, keys, before))
        return out

    def record(self, session, changes, recorded=()):
        '''Record a version for each child whose link changed in the flush.

        :param recorded: (item_type, item_id) of the objects that already got
            a version of their own in this flush.
        '''
        done = set(recorded)
        for change in changes:
            child = change.child
            state = attributes.instance_state(child)
            if state.deleted or state.was_deleted:
                continue
            object_id = get_object_id(child)
            if object_id in done:
                logger.debug('already recorded in this flush: %r' % child)
                continue
            policy = child.__versioned_policy__
            after = dict((key, state.dict.get(key, value))
                for key, value in change.before.items())
            diff = policy.builder.diff(change.before, after)
            if not set(diff) & set(change.keys):
                continue
            if not policy.should_record(child, Event.UPDATE):
                continue
            policy.record(session, child, Event.UPDATE,
                    changeset=policy.builder.encode_changes(diff),
                    created_at=policy.timestamp_for(child, state.dict),
                    extra_metadata=change.metadata())
            done.add(object_id)


def prop_is_scalar(owner, name):
    prop = class_mapper(type(owner)).relationships[name]
    return not prop.uselist
