'''Each unit of work records its own actor, however they interleave.'''
import asyncio
import threading

from audittrail import request
from audittrail.sqlalchemy import VersionStore

from .demo import Session, Widget, repo


def actors_of(session, widget_id):
    return [v.actor for v in VersionStore.query(session, 'Widget', widget_id)]


class TestConcurrentScopes:

    def setup_method(self):
        repo.rebuild_db()

    def teardown_method(self):
        Session.remove()

    def test_threads(self):
        # all scopes are open before anyone writes; the writes themselves
        # take turns on the single shared sqlite connection
        barrier = threading.Barrier(4)
        db_lock = threading.Lock()
        created = {}

        def work(name):
            with request.scope(actor=name, metadata={'worker': name}):
                barrier.wait()
                with db_lock:
                    session = Session()
                    widget = Widget(name=name)
                    session.add(widget)
                    session.commit()
                    created[name] = widget.id
                    Session.remove()

        threads = [threading.Thread(target=work, args=('user%s' % i,))
            for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        session = Session()
        assert len(created) == 4
        for name, widget_id in created.items():
            assert actors_of(session, widget_id) == [name]
            version = VersionStore.query(session, 'Widget', widget_id)[0]
            assert version.context_metadata['worker'] == name

    def test_tasks(self):
        factory = Session.session_factory

        async def work(name):
            with request.scope(actor=name):
                for i in range(3):
                    await asyncio.sleep(0)
                session = factory()
                try:
                    widget = Widget(name=name)
                    session.add(widget)
                    session.commit()
                    return name, widget.id
                finally:
                    session.close()

        async def main():
            return await asyncio.gather(*[work('task%s' % i)
                for i in range(5)])

        results = asyncio.run(main())
        session = Session()
        for name, widget_id in results:
            assert actors_of(session, widget_id) == [name]
        assert request.current_actor() is None
