'''Various useful tools for working with versioned domain models.

Primarily organized within a `Repository` object.
'''
import logging
logger = logging.getLogger('audittrail')

from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session

from .model import VersionedListener


class Repository(object):
    def __init__(self, our_metadata, our_session, dburi=None, engine=None,
            listener=None):
        '''
        @param our_session: a scoped_session or sessionmaker. The versioning
            listener is installed on it.
        @param dburi: sqlalchemy dburi. If supplied will create engine and bind
            it to the session.
        @param engine: an existing engine to use instead of dburi.
        '''
        self.metadata = our_metadata
        self.session = our_session
        self.dburi = dburi
        self.have_scoped_session = isinstance(self.session, scoped_session)
        if engine is None and self.dburi:
            engine = create_engine(dburi)
        self.engine = engine
        if self.engine is not None:
            self.session.configure(bind=self.engine)
        self.listener = listener or VersionedListener()
        if self.have_scoped_session:
            self.listener.install(self.session.session_factory)
        else:
            self.listener.install(self.session)

    def rebuild_db(self):
        logger.info('Rebuilding DB')
        if self.have_scoped_session:
            self.session.remove()
        self.metadata.drop_all(bind=self.engine)
        self.metadata.create_all(bind=self.engine)

    def create_db(self):
        self.metadata.create_all(bind=self.engine)

    def commit(self, remove=True):
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        finally:
            if remove and self.have_scoped_session:
                self.session.remove()
