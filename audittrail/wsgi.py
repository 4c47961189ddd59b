'''WSGI middleware opening one RequestScope per request.

Subclass and override the hooks, or pass callables::

    def current_user_id(environ):
        user = environ.get('myapp.user')
        return user.id if user else None

    app = RequestScopeMiddleware(app,
            actor_for_request=current_user_id,
            info_for_request=lambda environ: {'ip': environ.get('REMOTE_ADDR')})

The scope covers the call into the wrapped application only. Applications
that write to the database while streaming a response body must open their
own scope for that work: a scope left open until the server calls close()
would leak into the next request served by the same thread.
'''
import logging
logger = logging.getLogger('audittrail.wsgi')

from . import request
from .config import config


class RequestScopeMiddleware(object):

    def __init__(self, app, actor_for_request=None, info_for_request=None,
            enabled_for_request=None, user_for_request=None):
        self.app = app
        if actor_for_request is not None:
            self.actor_for_request = actor_for_request
        if info_for_request is not None:
            self.info_for_request = info_for_request
        if enabled_for_request is not None:
            self.enabled_for_request = enabled_for_request
        if user_for_request is not None:
            self.user_for_request = user_for_request

    def user_for_request(self, environ):
        '''The authenticated user, if any (default: REMOTE_USER).'''
        return environ.get('REMOTE_USER')

    def actor_for_request(self, environ):
        '''Identifier stored as the actor of every version in this request.'''
        return self.user_for_request(environ)

    def info_for_request(self, environ):
        '''Metadata stored alongside every version in this request.'''
        return {}

    def enabled_for_request(self, environ):
        return config['enabled']

    def __call__(self, environ, start_response):
        enabled = self.enabled_for_request(environ)
        if enabled:
            actor = self.actor_for_request(environ)
            metadata = self.info_for_request(environ)
            self._warn_if_actor_missing(environ, actor)
        else:
            actor, metadata = None, {}
        with request.scope(actor=actor, metadata=metadata, enabled=enabled):
            return self.app(environ, start_response)

    def _warn_if_actor_missing(self, environ, actor):
        if actor is not None:
            return
        if self.user_for_request(environ) is not None:
            logger.warning('A user is present for %s but no actor was derived '
                'from it; versions will be recorded without an actor' %
                environ.get('PATH_INFO', ''))
