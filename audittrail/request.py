'''Who is making changes, and from where.

A RequestScope lives for one unit of work (a web request, a background job,
an asyncio task) and carries the acting user, any metadata to store with each
version and switches to turn recording off. The active scope is held in a
context variable so concurrently running threads and tasks each see only
their own::

    with request.scope(actor=user.id, metadata={'ip': remote_addr}):
        handle(...)

Outside any scope there is no actor, no metadata and recording is enabled.

set_actor() and set_metadata() are kept for code written against the older
process-wide API. They mutate a single value shared by every thread and will
attribute changes to the wrong user under concurrency; each call site is
reported once with a ScopeMisuseWarning.
'''
import contextlib
import contextvars
import sys
import threading
import warnings

import logging
logger = logging.getLogger('audittrail.request')

from .exceptions import ScopeMisuseWarning

_UNSET = object()


class RequestScope(object):
    '''Immutable bundle of per unit-of-work settings.'''

    def __init__(self, actor=None, metadata=None, enabled=True,
            disabled_models=frozenset()):
        self.actor = actor
        self.metadata = dict(metadata or {})
        self.enabled = enabled
        self.disabled_models = frozenset(disabled_models)

    def derive(self, actor=_UNSET, metadata=_UNSET, enabled=_UNSET,
            disabled_models=_UNSET):
        '''Copy of this scope with the given values replaced.

        metadata is merged into the existing metadata rather than replacing
        it.
        '''
        merged = dict(self.metadata)
        if metadata is not _UNSET and metadata:
            merged.update(metadata)
        return RequestScope(
            actor=self.actor if actor is _UNSET else actor,
            metadata=merged,
            enabled=self.enabled if enabled is _UNSET else enabled,
            disabled_models=self.disabled_models if disabled_models is _UNSET
                else disabled_models,
            )

    def __repr__(self):
        return '<RequestScope actor=%r enabled=%s metadata=%r>' % (self.actor,
                self.enabled, self.metadata)


_current = contextvars.ContextVar('audittrail.request.scope', default=None)

## --------------------------------------------------------
## Legacy ambient values (not concurrency safe)

_ambient = {'actor': None, 'metadata': {}}
_warned_sites = set()
_warned_lock = threading.Lock()


def _warn_once(api_name):
    frame = sys._getframe(2)
    site = (frame.f_code.co_filename, frame.f_lineno)
    with _warned_lock:
        if site in _warned_sites:
            return
        _warned_sites.add(site)
    msg = ('%s() sets a process-wide value shared by all threads and tasks; '
        'use audittrail.request.scope() instead (%s:%s)') % ((api_name,) + site)
    logger.warning(msg)
    warnings.warn_explicit(msg, ScopeMisuseWarning, site[0], site[1])


def set_actor(actor):
    '''Deprecated: set the actor for everything not inside a scope.'''
    _warn_once('set_actor')
    _ambient['actor'] = actor


def set_metadata(metadata):
    '''Deprecated: set metadata for everything not inside a scope.'''
    _warn_once('set_metadata')
    _ambient['metadata'] = dict(metadata or {})


def clear_ambient():
    _ambient['actor'] = None
    _ambient['metadata'] = {}


## --------------------------------------------------------
## Scoped API

def current_scope():
    '''The active RequestScope, or one built from the legacy ambient values.'''
    active = _current.get()
    if active is not None:
        return active
    return RequestScope(actor=_ambient['actor'], metadata=_ambient['metadata'])


@contextlib.contextmanager
def scope(actor=_UNSET, metadata=_UNSET, enabled=_UNSET):
    '''Run the enclosed block with a new scope active.

    Values not given are inherited from the enclosing scope. The previous
    scope is restored however the block exits.
    '''
    new = current_scope().derive(actor=actor, metadata=metadata,
            enabled=enabled)
    token = _current.set(new)
    try:
        yield new
    finally:
        _current.reset(token)


def with_scope(fn, actor=_UNSET, metadata=_UNSET, enabled=_UNSET):
    '''Call fn() inside a new scope and return its result.'''
    with scope(actor=actor, metadata=metadata, enabled=enabled):
        return fn()


@contextlib.contextmanager
def without_versioning(*models):
    '''Suppress recording for the given model classes (or for everything).'''
    current = current_scope()
    if models:
        new = current.derive(
                disabled_models=current.disabled_models | frozenset(models))
    else:
        new = current.derive(enabled=False)
    token = _current.set(new)
    try:
        yield new
    finally:
        _current.reset(token)


def current_actor():
    return current_scope().actor


def current_metadata():
    return dict(current_scope().metadata)


def is_enabled():
    return current_scope().enabled


def is_enabled_for_model(model):
    active = current_scope()
    if not active.enabled:
        return False
    for klass in getattr(model, '__mro__', (model,)):
        if klass in active.disabled_models:
            return False
    return True
