import random

import pytest

from errors import EmptyQueueError, QueueError
from models import RepeatMode
from playqueue import PlaybackQueue


def _queue(ids, *, seed=7):
    q = PlaybackQueue(rng=random.Random(seed))
    q.extend(ids)
    return q


def test_next_starts_at_first_entry_and_stops_at_end_without_loop():
    q = _queue([1, 2, 3])
    assert q.current() is None

    assert q.next() == 1
    assert q.next() == 2
    assert q.next() == 3
    assert q.next() is None
    assert q.current() == 3


def test_next_and_previous_wrap_only_with_loop():
    q = _queue([1, 2, 3])
    q.next()
    assert q.previous() is None
    assert q.current() == 1

    q.set_loop(True)
    assert q.repeat == RepeatMode.ALL
    assert q.previous() == 3
    assert q.next() == 1


def test_next_then_previous_returns_to_same_entry_mid_queue():
    q = _queue([10, 20, 30, 40])
    q.jump_to(20)
    before = q.current()
    q.next()
    assert q.previous() == before


def test_empty_queue_navigation():
    q = PlaybackQueue()
    assert q.next() is None
    assert q.previous() is None
    with pytest.raises(EmptyQueueError):
        q.require_current()


def test_remove_cursor_entry_moves_to_next():
    q = _queue(["A", "B", "C"])
    q.next()
    assert q.next() == "B"

    assert q.remove("B") is True
    assert q.current() == "C"
    assert q.next() is None


def test_remove_last_entry_under_cursor():
    q = _queue([1, 2, 3])
    q.jump_to(3)
    assert q.remove(3) is True
    assert q.current() == 2

    q = _queue([1, 2, 3])
    q.set_loop(True)
    q.jump_to(3)
    q.remove(3)
    assert q.current() == 1


def test_remove_before_cursor_keeps_current():
    q = _queue([1, 2, 3, 4])
    q.jump_to(3)
    assert q.remove(1) is False
    assert q.current() == 3
    assert q.ids() == [2, 3, 4]


def test_remove_only_entry_clears_cursor():
    q = _queue([5])
    q.next()
    assert q.remove(5) is True
    assert q.current() is None
    assert len(q) == 0


def test_remove_unknown_id_is_noop():
    q = _queue([1, 2])
    q.next()
    assert q.remove(99) is False
    assert q.ids() == [1, 2]


def test_duplicate_id_removes_occurrence_nearest_cursor():
    q = _queue([7, 1, 2, 7, 3])
    q.jump_to(2)
    assert q.remove(7) is False
    assert q.ids() == [7, 1, 2, 3]
    assert q.current() == 2


def test_jump_to_prefers_occurrence_nearest_cursor():
    q = _queue([4, 1, 4, 2])
    q.next()
    q.next()
    q.jump_to(4)
    assert q.cursor == 2


def test_jump_to_unknown_id_raises():
    q = _queue([1])
    with pytest.raises(QueueError):
        q.jump_to(2)


def test_remove_all_drops_every_occurrence():
    q = _queue([1, 2, 1, 3])
    q.jump_to(2)
    assert q.remove_all(1) is False
    assert q.ids() == [2, 3]
    assert q.current() == 2


def test_shuffle_keeps_current_and_restores_insertion_order():
    ids = list(range(1, 11))
    q = _queue(ids)
    q.jump_to(4)

    q.set_shuffle(True)
    assert q.shuffle
    assert q.current() == 4
    assert sorted(q.order()) == ids
    assert q.ids() == ids
    # Entries already played stay ahead of the cursor.
    assert q.order()[:4] == [1, 2, 3, 4]

    q.next()
    q.next()
    current = q.current()
    q.set_shuffle(False)
    assert q.current() == current
    assert q.order() == ids


def test_enqueue_under_shuffle_goes_into_unplayed_tail():
    for seed in range(20):
        q = _queue([1, 2, 3, 4], seed=seed)
        q.jump_to(2)
        q.set_shuffle(True)
        played = q.order()[: q.cursor + 1]

        q.enqueue(99)
        order = q.order()
        assert order[: len(played)] == played
        assert order.index(99) > q.cursor
        assert q.current() == 2


def test_shuffle_before_playing_covers_all_entries():
    q = _queue([1, 2, 3])
    q.set_shuffle(True)
    seen = [q.next(), q.next(), q.next()]
    assert sorted(seen) == [1, 2, 3]
    assert q.next() is None


def test_remove_under_shuffle_keeps_permutation_consistent():
    q = _queue([1, 2, 3, 4, 5])
    q.set_shuffle(True)
    q.next()
    current = q.current()
    victim = next(i for i in q.order() if i != current)

    q.remove(victim)
    assert victim not in q.order()
    assert sorted(q.order()) == sorted(q.ids())
    assert q.current() == current

    q.set_shuffle(False)
    assert q.order() == [i for i in [1, 2, 3, 4, 5] if i != victim]


def test_repeat_one_replays_on_auto_advance_only():
    q = _queue([1, 2])
    q.next()
    q.set_repeat(RepeatMode.ONE)

    assert q.next(auto=True) == 1
    assert q.next() == 2
    assert q.next() == 1


def test_restore_places_cursor_on_insertion_index():
    q = PlaybackQueue(rng=random.Random(1))
    q.restore([5, 6, 7], cursor_index=1, shuffle=False)
    assert q.current() == 6
    assert q.cursor_index() == 1

    q.restore([5, 6, 7], cursor_index=9, shuffle=True)
    assert q.current() is None
    assert q.shuffle


def test_clear_resets_cursor():
    q = _queue([1, 2])
    q.next()
    q.clear()
    assert q.current() is None
    assert q.ids() == []
