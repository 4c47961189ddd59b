'''
About
=====

audittrail is a package which keeps an audit trail of your domain model: every
create, update and destroy of a tracked record is stored as an immutable
Version row saying what changed, who changed it and when. Any earlier state of
a record can then be rebuilt ('reified') from that history.

At present the package is provided as an extension to SQLAlchemy.


Copyright and License
=====================

(c) The audittrail contributors

Licensed under the MIT license:

  <http://www.opensource.org/licenses/mit-license.php>


Versions, Changesets and Scopes
===============================

Each tracked record (the 'item') gets an ordered list of Version objects. A
Version holds:

  * the event (create, update or destroy);
  * a changeset mapping each changed attribute to [previous, new];
  * for a destroy, a full snapshot of the record as it was before the destroy;
  * the actor responsible and any contextual metadata for the request.

Rather than storing a snapshot for every change only the diffs are kept. To
get the record as it was after a given Version we start from the live record
(or from the snapshot of a later destroy) and walk the history backwards,
undoing each newer changeset.

Who made a change is taken from the current 'scope', a small context object
which lives for one unit of work (a request, a job, a task) and is never
visible to concurrently running units of work.

To give a flavour of all of this::

    from audittrail import request
    from audittrail.sqlalchemy import make_versioned, VersionedListener

    make_versioned(Widget, ignore=['hit_count'])
    VersionedListener().install(Session)

    with request.scope(actor='alice', metadata={'ip': '10.0.0.1'}):
        widget = Widget(name='Bob')
        session.add(widget)
        session.commit()
        widget.name = 'Leonard'
        session.commit()

    first = widget.versions[0]
    assert first.changeset == {'id': [None, widget.id], 'name': [None, 'Bob'], ...}
    old = first.reify()
    assert old.name == 'Bob'
    assert not old.is_live()


Code in Action
--------------

To see some real code in action take a look at::

    audittrail/test/sqlalchemy/demo.py
    audittrail/test/sqlalchemy/test_demo.py
'''
__version__ = '0.3.0'
__description__ = 'An audit trail and versioning engine for domain models.'
