import asyncio
import threading
import warnings

import pytest

from audittrail import request
from audittrail.exceptions import ScopeMisuseWarning


class Thing(object):
    pass


class SubThing(Thing):
    pass


class Other(object):
    pass


class TestDefaults:
    def setup_method(self):
        request.clear_ambient()

    def test_no_scope(self):
        assert request.current_actor() is None
        assert request.current_metadata() == {}
        assert request.is_enabled()
        assert request.is_enabled_for_model(Thing)

    def test_metadata_is_a_copy(self):
        with request.scope(metadata={'a': 1}):
            request.current_metadata()['b'] = 2
            assert request.current_metadata() == {'a': 1}


class TestScope:
    def test_scope(self):
        with request.scope(actor='alice', metadata={'ip': '1.2.3.4'}) as s:
            assert s.actor == 'alice'
            assert request.current_actor() == 'alice'
            assert request.current_metadata() == {'ip': '1.2.3.4'}
        assert request.current_actor() is None
        assert request.current_metadata() == {}

    def test_nested_inherits(self):
        with request.scope(actor='alice', metadata={'ip': '1.2.3.4'}):
            with request.scope(metadata={'job': 'import'}):
                assert request.current_actor() == 'alice'
                assert request.current_metadata() == {'ip': '1.2.3.4',
                        'job': 'import'}
            with request.scope(actor='bob'):
                assert request.current_actor() == 'bob'
            assert request.current_actor() == 'alice'
            assert request.current_metadata() == {'ip': '1.2.3.4'}

    def test_explicit_none_actor(self):
        with request.scope(actor='alice'):
            with request.scope(actor=None):
                assert request.current_actor() is None

    def test_restored_on_error(self):
        with pytest.raises(RuntimeError):
            with request.scope(actor='alice'):
                raise RuntimeError('boom')
        assert request.current_actor() is None

    def test_with_scope(self):
        out = request.with_scope(request.current_actor, actor='carol')
        assert out == 'carol'
        assert request.current_actor() is None

    def test_with_scope_restores_on_error(self):
        def fail():
            raise ValueError('no')
        with pytest.raises(ValueError):
            request.with_scope(fail, actor='carol')
        assert request.current_actor() is None

    def test_disabled(self):
        with request.scope(enabled=False):
            assert not request.is_enabled()
            assert not request.is_enabled_for_model(Thing)
        assert request.is_enabled()


class TestWithoutVersioning:
    def test_everything(self):
        with request.without_versioning():
            assert not request.is_enabled()
        assert request.is_enabled()

    def test_models(self):
        with request.without_versioning(Thing):
            assert request.is_enabled()
            assert not request.is_enabled_for_model(Thing)
            assert not request.is_enabled_for_model(SubThing)
            assert request.is_enabled_for_model(Other)
        assert request.is_enabled_for_model(Thing)

    def test_keeps_actor(self):
        with request.scope(actor='alice'):
            with request.without_versioning(Thing):
                assert request.current_actor() == 'alice'

    def test_restored_on_error(self):
        with pytest.raises(KeyError):
            with request.without_versioning():
                raise KeyError('x')
        assert request.is_enabled()


class TestIsolation:
    def test_threads(self):
        barrier = threading.Barrier(4)
        seen = {}

        def work(name):
            with request.scope(actor=name, metadata={'worker': name}):
                barrier.wait()
                observed = []
                for i in range(50):
                    observed.append((request.current_actor(),
                        request.current_metadata()['worker']))
                barrier.wait()
                seen[name] = observed

        threads = [threading.Thread(target=work, args=('user%s' % i,))
            for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(seen) == 4
        for name, observed in seen.items():
            assert set(observed) == set([(name, name)])

    def test_tasks(self):
        async def work(name):
            with request.scope(actor=name):
                out = []
                for i in range(10):
                    await asyncio.sleep(0)
                    out.append(request.current_actor())
                return name, out

        async def main():
            return await asyncio.gather(*[work('task%s' % i)
                for i in range(5)])

        for name, out in asyncio.run(main()):
            assert out == [name] * 10
        assert request.current_actor() is None

    def test_new_thread_sees_no_scope(self):
        seen = []
        with request.scope(actor='alice'):
            t = threading.Thread(
                    target=lambda: seen.append(request.current_actor()))
            t.start()
            t.join()
        assert seen == [None]


class TestLegacy:
    def setup_method(self):
        request.clear_ambient()

    def teardown_method(self):
        request.clear_ambient()

    def _set(self, actor):
        request.set_actor(actor)

    def test_set_actor(self):
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            request.set_actor('legacy')
        assert request.current_actor() == 'legacy'
        with request.scope(actor='scoped'):
            assert request.current_actor() == 'scoped'
        assert request.current_actor() == 'legacy'

    def test_set_metadata(self):
        with warnings.catch_warnings():
            warnings.simplefilter('ignore')
            request.set_metadata({'ip': '127.0.0.1'})
        assert request.current_metadata() == {'ip': '127.0.0.1'}

    def test_warns_once_per_call_site(self, caplog):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            for i in range(3):
                self._set('a%s' % i)
        misuse = [w for w in caught if issubclass(w.category,
            ScopeMisuseWarning)]
        assert len(misuse) == 1
        assert 'set_actor' in str(misuse[0].message)
        logged = [r for r in caplog.records if 'set_actor' in r.getMessage()]
        assert len(logged) == 1
        assert request.current_actor() == 'a2'

    def test_other_call_site_warns_again(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter('always')
            request.set_metadata({'a': 1})
            request.set_metadata({'b': 2})
        misuse = [w for w in caught if issubclass(w.category,
            ScopeMisuseWarning)]
        assert len(misuse) == 2
