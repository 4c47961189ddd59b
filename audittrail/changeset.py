'''Compute the changeset recorded for a single event on a tracked object.

This module knows nothing about the ORM: it works on plain mappings of
attribute name to value and leaves getting those mappings to the caller.
'''
import logging
logger = logging.getLogger('audittrail.changeset')

from .exceptions import PolicyConfigurationError
from .serializers import default_registry


class Event(object):
    CREATE = 'create'
    UPDATE = 'update'
    DESTROY = 'destroy'

    ALL = (CREATE, UPDATE, DESTROY)


class AttributeFilter(object):
    '''A set of attribute names, each optionally guarded by a predicate.

    Built from a list whose items are either names or dicts mapping a name to
    a predicate called with the attribute's new value, e.g.::

        ['title', {'color': lambda value: value == 'Yellow'}]

    A plain name always matches; a guarded name matches only when its
    predicate returns True.
    '''

    def __init__(self, spec=None):
        self.predicates = {}
        for item in spec or ():
            if isinstance(item, dict):
                for name, predicate in item.items():
                    if not callable(predicate):
                        msg = 'Predicate for attribute %r is not callable' % name
                        raise PolicyConfigurationError(msg)
                    self.predicates[name] = predicate
            elif isinstance(item, str):
                self.predicates[item] = None
            else:
                msg = 'Invalid attribute filter entry: %r' % (item,)
                raise PolicyConfigurationError(msg)

    @property
    def names(self):
        return set(self.predicates)

    def __bool__(self):
        return bool(self.predicates)

    def __contains__(self, name):
        return name in self.predicates

    def matches(self, name, value):
        if name not in self.predicates:
            return False
        predicate = self.predicates[name]
        return predicate is None or bool(predicate(value))


class ChangesetBuilder(object):
    '''Turn before/after attribute mappings into a changeset.

    :param only: if given, only changes to these attributes are notable and
        only they appear in changesets.
    :param ignore: changes to these attributes are not notable: they neither
        trigger a version nor appear in its changeset.
    :param skip: these attributes are never stored anywhere, not even in
        destroy snapshots.
    :param registry: codec registry used to encode values.
    '''

    def __init__(self, only=None, ignore=None, skip=None, registry=None):
        self.only = AttributeFilter(only)
        self.ignore = AttributeFilter(ignore)
        self.skip = AttributeFilter(skip)
        self.registry = registry or default_registry

    def validate(self, attribute_names):
        '''Check the filters against the attributes the entity really has.

        Meant to run once when a model is set up so bad configuration never
        reaches the write path.
        '''
        known = set(attribute_names)
        for label, filter_ in (('only', self.only), ('ignore', self.ignore),
                ('skip', self.skip)):
            unknown = filter_.names - known
            if unknown:
                msg = '%s refers to unknown attributes: %s' % (label,
                        ', '.join(sorted(unknown)))
                raise PolicyConfigurationError(msg)
        for label, filter_ in (('ignore', self.ignore), ('skip', self.skip)):
            both = self.only.names & filter_.names
            if both:
                msg = 'Attributes both in only and %s: %s' % (label,
                        ', '.join(sorted(both)))
                raise PolicyConfigurationError(msg)
        if self.only and not (self.only.names - self.skip.names):
            raise PolicyConfigurationError('only leaves no attribute to track')

    def is_notable(self, name, value):
        if name in self.skip:
            return False
        if self.only:
            return self.only.matches(name, value)
        return not self.ignore.matches(name, value)

    def diff(self, before, after):
        '''Return {name: [previous, new]} for notable attributes that differ.

        Names missing from ``after`` are not considered; a name missing from
        ``before`` counts as previously None.
        '''
        changes = {}
        for name, new in after.items():
            old = before.get(name)
            if old == new:
                continue
            if not self.is_notable(name, new):
                logger.debug('diff: ignoring change to %s' % name)
                continue
            changes[name] = [old, new]
        return changes

    def for_update(self, before, after):
        return self.encode_changes(self.diff(before, after))

    def for_create(self, attributes):
        changes = {}
        for name, value in attributes.items():
            if value is None or not self.is_notable(name, value):
                continue
            changes[name] = [None, value]
        return self.encode_changes(changes)

    def snapshot(self, attributes):
        '''Full encoded copy of the attributes, skipped ones excepted.'''
        return dict((name, self.registry.encode(value))
            for name, value in attributes.items()
            if name not in self.skip)

    def encode_changes(self, changes):
        return dict((name, [self.registry.encode(old), self.registry.encode(new)])
            for name, (old, new) in changes.items())

    def decode_changeset(self, changeset):
        return decode_changeset(changeset, self.registry)

    def decode_snapshot(self, snapshot):
        return decode_snapshot(snapshot, self.registry)


def decode_changeset(changeset, registry=None):
    registry = registry or default_registry
    if not changeset:
        return {}
    return dict((name, [registry.decode(old), registry.decode(new)])
        for name, (old, new) in changeset.items())


def decode_snapshot(snapshot, registry=None):
    registry = registry or default_registry
    if not snapshot:
        return {}
    return dict((name, registry.decode(value))
        for name, value in snapshot.items())
