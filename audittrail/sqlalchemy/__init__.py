'''SQLAlchemy audit trail extension.

For general information about versions, changesets and scopes see the root
audittrail package docstring.

Setting up
==========

1. Create the version table and map Version::

    mapper_registry = registry()
    setup_versions(metadata, mapper_registry.map_imperatively)

2. Map your classes (mixing in VersionedObjectMixin) and register each with
   make_versioned(), which is where the per class options go.

3. Install a VersionedListener on your session factory.

Implementation Notes
====================

All the work happens in session events. Versions are inserted on the
connection the flush is using so they live and die with the transaction of
the change they describe. Nothing is written for a flush that changes nothing
notable.

Some useful links:

http://docs.sqlalchemy.org/en/latest/orm/session_events.html
http://docs.sqlalchemy.org/en/latest/orm/examples.html#versioning-with-a-history-table
'''
from .tools import Repository
from .version import Version, VersionStore, setup_versions, make_tables
from .base import make_versioned, VersionedObjectMixin, VersionPolicy
from .base import is_versioned
from .model import VersionedListener, versioned_session
from .associations import AssociationTracker
from .reify import reify
from .sqla import SQLAlchemyMixin, SQLAlchemySession, JsonType
