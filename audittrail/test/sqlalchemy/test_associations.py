from audittrail.changeset import Event
from audittrail.sqlalchemy import VersionStore

from .demo import Session, Widget, Wotsit, repo


class TestAssociations:

    @classmethod
    def setup_class(self):
        repo.rebuild_db()
        session = Session()
        w1 = Widget(name='w1')
        w2 = Widget(name='w2')
        wotsit = Wotsit(name='k')
        w1.wotsits.append(wotsit)
        session.add_all([w1, w2])
        session.commit()
        self.w1_id = w1.id
        self.w2_id = w2.id
        self.wotsit_id = wotsit.id
        Session.remove()

    @classmethod
    def teardown_class(self):
        Session.remove()

    def teardown_method(self):
        Session.remove()

    def wotsit_versions(self):
        return VersionStore.query(Session(), 'Wotsit', self.wotsit_id)

    def association(self, version):
        return (version.context_metadata or {}).get('association')

    def test_created_with_owner(self):
        versions = self.wotsit_versions()
        assert [v.event for v in versions] == ['create']
        assert versions[0].changeset['widget_id'] == [None, self.w1_id]
        assert self.association(versions[0]) is None

    def test_moved_to_other_owner(self):
        session = Session()
        w2 = session.get(Widget, self.w2_id)
        wotsit = session.get(Wotsit, self.wotsit_id)
        w2.wotsits.append(wotsit)
        session.commit()

        versions = self.wotsit_versions()
        assert len(versions) == 2
        moved = versions[-1]
        assert moved.event == Event.UPDATE
        assert moved.changeset['widget_id'] == [self.w1_id, self.w2_id]
        # the move bumped the child's own timestamp too
        assert set(moved.changeset) == set(['widget_id', 'updated_at'])
        assert self.association(moved) == {
            'name': 'wotsits',
            'owner_type': 'Widget',
            'owner_id': str(self.w2_id),
            'owner_event': 'update',
            }
        # the owner's own columns did not change
        assert len(VersionStore.query(session, 'Widget', self.w2_id)) == 1

    def test_removed_from_owner(self):
        session = Session()
        w2 = session.get(Widget, self.w2_id)
        wotsit = session.get(Wotsit, self.wotsit_id)
        w2.wotsits.remove(wotsit)
        session.commit()

        removed = self.wotsit_versions()[-1]
        assert removed.changeset['widget_id'] == [self.w2_id, None]
        assert self.association(removed)['owner_id'] == str(self.w2_id)

    def test_direct_change_not_recorded_twice(self):
        before = len(self.wotsit_versions())
        session = Session()
        w1 = session.get(Widget, self.w1_id)
        wotsit = session.get(Wotsit, self.wotsit_id)
        w1.wotsits.append(wotsit)
        wotsit.name = 'renamed'
        session.commit()

        versions = self.wotsit_versions()
        assert len(versions) == before + 1
        assert versions[-1].changeset['name'] == ['k', 'renamed']
        assert versions[-1].changeset['widget_id'] == [None, self.w1_id]
        assert self.association(versions[-1]) is None
        assert versions[-2].reify().widget_id is None

    def test_owner_destroyed(self):
        session = Session()
        w1 = session.get(Widget, self.w1_id)
        assert [w.id for w in w1.wotsits] == [self.wotsit_id]
        session.delete(w1)
        session.commit()

        detached = self.wotsit_versions()[-1]
        assert detached.changeset['widget_id'] == [self.w1_id, None]
        assert self.association(detached) == {
            'name': 'wotsits',
            'owner_type': 'Widget',
            'owner_id': str(self.w1_id),
            'owner_event': 'destroy',
            }
        owner_events = [v.event for v in
            VersionStore.query(session, 'Widget', self.w1_id)]
        assert owner_events == ['create', 'destroy']

    def test_new_child_gets_create_only(self):
        session = Session()
        w2 = session.get(Widget, self.w2_id)
        fresh = Wotsit(name='fresh')
        w2.wotsits.append(fresh)
        session.commit()

        versions = VersionStore.query(session, 'Wotsit', fresh.id)
        assert [v.event for v in versions] == ['create']
        assert versions[0].changeset['widget_id'] == [None, self.w2_id]


class TestManyToOneSide:
    '''Links changed from the child's side, where the owner may not be
    loaded at all.'''

    def setup_method(self):
        repo.rebuild_db()
        session = Session()
        w1 = Widget(name='w1')
        w2 = Widget(name='w2')
        wotsit = Wotsit(name='k', widget=w1)
        session.add_all([w1, w2, wotsit])
        session.commit()
        self.w1_id = w1.id
        self.w2_id = w2.id
        self.wotsit_id = wotsit.id
        Session.remove()

    def teardown_method(self):
        Session.remove()

    def wotsit_versions(self):
        return VersionStore.query(Session(), 'Wotsit', self.wotsit_id)

    def test_parent_reassigned(self):
        session = Session()
        wotsit = session.get(Wotsit, self.wotsit_id)
        w2 = session.get(Widget, self.w2_id)
        wotsit.widget = w2
        session.commit()
        assert session.get(Wotsit, self.wotsit_id).widget_id == self.w2_id

        versions = self.wotsit_versions()
        assert [v.event for v in versions] == ['create', 'update']
        assert versions[-1].changeset['widget_id'] == [self.w1_id, self.w2_id]
        assert versions[0].reify().widget_id == self.w1_id

    def test_parent_reassigned_with_other_change(self):
        session = Session()
        wotsit = session.get(Wotsit, self.wotsit_id)
        wotsit.widget = session.get(Widget, self.w2_id)
        wotsit.name = 'renamed'
        session.commit()

        versions = self.wotsit_versions()
        assert len(versions) == 2
        assert versions[-1].changeset['name'] == ['k', 'renamed']
        assert versions[-1].changeset['widget_id'] == [self.w1_id, self.w2_id]
        first = versions[0].reify()
        assert (first.name, first.widget_id) == ('k', self.w1_id)

    def test_moved_in_later_flush_of_same_transaction(self):
        session = Session()
        wotsit = session.get(Wotsit, self.wotsit_id)
        wotsit.name = 'first'
        session.flush()
        w2 = session.get(Widget, self.w2_id)
        w2.wotsits.append(wotsit)
        session.commit()

        versions = self.wotsit_versions()
        assert [v.event for v in versions] == ['create', 'update', 'update']
        assert 'widget_id' not in versions[1].changeset
        assert versions[2].changeset['widget_id'] == [self.w1_id, self.w2_id]
        assert versions[2].context_metadata['association']['owner_id'] == \
                str(self.w2_id)
        assert versions[1].reify().widget_id == self.w1_id

    def test_round_trip(self):
        session = Session()
        wotsit = session.get(Wotsit, self.wotsit_id)
        wotsit.widget = session.get(Widget, self.w2_id)
        session.commit()
        wotsit.widget = None
        wotsit.name = 'orphan'
        session.commit()
        w1 = session.get(Widget, self.w1_id)
        w1.wotsits.append(wotsit)
        session.commit()

        expected = [('k', self.w1_id), ('k', self.w2_id),
            ('orphan', None), ('orphan', self.w1_id)]
        versions = self.wotsit_versions()
        assert [(v.reify().name, v.reify().widget_id) for v in versions] == \
                expected
        for version in versions:
            assert version.reify().updated_at == version.created_at
