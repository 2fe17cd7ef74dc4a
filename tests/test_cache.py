import pytest
from cache import BoardCache
from client import FetchResult
from errors import Transient
from fakes import BOARD, FakeTransport, task

KEY = BOARD['key']


@pytest.fixture
def transport():
    return FakeTransport([task('T1', position=1000), task('T2', position=2000)])


@pytest.fixture
def cache():
    return BoardCache.create(clock=lambda: 0.0)


def move_to_done(task_id):
    return lambda snap: snap.replace_task(task_id, status='DONE')


class TestConditionalFetch:
    def test_first_fetch_stores_snapshot_and_validator(self, cache, transport):
        snapshot = cache.fetch(KEY, transport)
        assert cache.read(KEY) is snapshot
        assert snapshot.validator == '"v1"'
        assert [x.id for x in snapshot.column('TODO')] == ['T1', 'T2']

    def test_not_modified_keeps_same_object_and_does_not_notify(self, cache, transport):
        first = cache.fetch(KEY, transport)
        seen = []
        cache.subscribe(lambda key, snap: seen.append(snap))
        assert cache.fetch(KEY, transport) is first
        assert seen == []

    def test_validator_sent_back_verbatim(self, cache, transport):
        sent = []
        original = transport.get_board

        def spy(key, etag=None):
            sent.append(etag)
            return original(key, etag)
        transport.get_board = spy
        cache.fetch(KEY, transport)
        cache.fetch(KEY, transport)
        assert sent == [None, '"v1"']

    def test_new_payload_replaces_snapshot_and_validator(self, cache, transport):
        first = cache.fetch(KEY, transport)
        transport.update_task('T1', {'title': 'renamed'}, KEY)
        second = cache.fetch(KEY, transport)
        assert second is not first
        assert second.validator == '"v2"'
        assert second.task('T1').title == 'renamed'
        assert cache.read(KEY) is second

    def test_not_modified_without_cached_copy_refetches_unconditionally(self, cache):
        calls = []

        class Stub:
            def get_board(self, key, etag=None):
                calls.append(etag)
                if len(calls) == 1:
                    return FetchResult(None, '"old"', not_modified=True)
                return FetchResult(dict(BOARD, tasks=[]), '"fresh"')
        snapshot = cache.fetch(KEY, Stub())
        assert calls == [None, None]
        assert snapshot.validator == '"fresh"'

    def test_repeated_not_modified_without_cache_is_an_error(self, cache):
        class Stub:
            def get_board(self, key, etag=None):
                return FetchResult(None, None, not_modified=True)
        with pytest.raises(Transient):
            cache.fetch(KEY, Stub())

    def test_read_superseded_by_optimistic_write_is_dropped(self, cache, transport):
        cache.fetch(KEY, transport)
        transport.update_task('T1', {'title': 'server edit'}, KEY)
        handles = []
        transport.on_get = lambda: handles.append(cache.apply_optimistic(KEY, move_to_done('T2')))
        result = cache.fetch(KEY, transport)
        assert result is handles[0].applied
        assert cache.read(KEY).task('T2').status == 'DONE'
        assert cache.read(KEY).task('T1').title == 'task T1'

    def test_cancelled_read_is_dropped(self, cache, transport):
        first = cache.fetch(KEY, transport)
        transport.update_task('T1', {'title': 'server edit'}, KEY)
        transport.on_get = lambda: cache.cancel(KEY)
        cache.fetch(KEY, transport)
        assert cache.read(KEY) is first


class TestOptimistic:
    def test_apply_then_rollback_restores_exact_snapshot(self, cache, transport):
        before = cache.fetch(KEY, transport)
        handle = cache.apply_optimistic(KEY, move_to_done('T1'))
        assert cache.read(KEY).task('T1').status == 'DONE'
        cache.rollback(handle)
        assert cache.read(KEY) is before
        assert cache.read(KEY) == before

    def test_rollback_after_commit_is_noop(self, cache, transport):
        cache.fetch(KEY, transport)
        handle = cache.apply_optimistic(KEY, move_to_done('T1'))
        cache.commit(handle)
        cache.rollback(handle)
        assert cache.read(KEY) is handle.applied
        assert not cache.has_pending(KEY)

    def test_pending_until_settled(self, cache, transport):
        cache.fetch(KEY, transport)
        handle = cache.apply_optimistic(KEY, move_to_done('T1'))
        assert cache.has_pending(KEY)
        cache.rollback(handle)
        cache.rollback(handle)
        assert not cache.has_pending(KEY)

    def test_overlapping_rollbacks_last_one_wins(self, cache, transport):
        original = cache.fetch(KEY, transport)
        first = cache.apply_optimistic(KEY, move_to_done('T1'))
        second = cache.apply_optimistic(KEY, move_to_done('T2'))
        cache.rollback(second)
        cache.rollback(first)
        assert cache.read(KEY) is original

    def test_apply_on_uncached_board_raises(self, cache):
        with pytest.raises(KeyError):
            cache.apply_optimistic('nope', move_to_done('T1'))

    def test_listeners_see_every_replacement(self, cache, transport):
        cache.fetch(KEY, transport)
        seen = []
        unsubscribe = cache.subscribe(lambda key, snap: seen.append(snap))
        handle = cache.apply_optimistic(KEY, move_to_done('T1'))
        cache.rollback(handle)
        unsubscribe()
        cache.apply_optimistic(KEY, move_to_done('T2'))
        assert seen == [handle.applied, handle.previous]


class TestLifecycle:
    def test_evict_drops_entry_and_notifies(self, cache, transport):
        cache.fetch(KEY, transport)
        seen = []
        cache.subscribe(lambda key, snap: seen.append((key, snap)))
        cache.evict(KEY)
        assert cache.read(KEY) is None
        assert seen == [(KEY, None)]

    def test_collect_evicts_idle_boards_without_pending_writes(self, transport):
        now = [0.0]
        cache = BoardCache.create(clock=lambda: now[0], idle_horizon=60)
        cache.fetch(KEY, transport)
        now[0] = 30.0
        assert cache.collect() == []
        now[0] = 100.0
        handle = cache.apply_optimistic(KEY, move_to_done('T1'))
        now[0] = 500.0
        assert cache.collect() == []
        cache.commit(handle)
        assert cache.collect() == [KEY]
        assert cache.keys() == []

    def test_dispose_empties_store(self, cache, transport):
        cache.fetch(KEY, transport)
        cache.dispose()
        assert cache.read(KEY) is None
