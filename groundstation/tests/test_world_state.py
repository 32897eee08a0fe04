import threading

from groundstation.models import Direction, Ground, Measure, Position
from groundstation.services.world_state import WorldStateStore


def make_store(width=3, height=3) -> WorldStateStore:
    store = WorldStateStore()
    store.set_world_size(width, height)
    return store


def test_reservation_is_exclusive_between_owners():
    store = make_store()

    assert store.try_reserve((1, 1), "a")
    assert not store.try_reserve((1, 1), "b")
    assert store.reservation_owner((1, 1)) == "a"


def test_second_reserve_by_same_owner_fails():
    store = make_store()
    assert store.try_reserve((1, 1), "a")

    assert not store.try_reserve((1, 1), "a")
    assert store.release((1, 1), "a")
    assert store.try_reserve((1, 1), "a")
    assert store.reservation_owner((1, 1)) == "a"


def test_release_checks_owner():
    store = make_store()
    store.try_reserve((2, 0), "a")

    assert not store.release((2, 0), "b")
    assert store.is_reserved((2, 0))
    assert store.release((2, 0), "a")
    assert not store.is_reserved((2, 0))
    assert not store.release(None)


def test_cannot_reserve_cell_occupied_by_other_agent():
    store = make_store()
    store.set_agent_position("a", Position(x=0, y=0, direction=Direction.EAST))

    assert not store.try_reserve((0, 0), "b")
    assert store.try_reserve((0, 0), "a")


def test_concurrent_reservations_have_one_winner():
    store = make_store()
    winners = []
    barrier = threading.Barrier(8)

    def contend(owner):
        barrier.wait()
        if store.try_reserve((1, 2), owner):
            winners.append(owner)

    threads = [threading.Thread(target=contend, args=(f"r{i}",)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1


def test_recording_is_idempotent_and_completes_world():
    store = make_store(2, 1)
    sand = Measure(ground=Ground.SAND, temperature=10.0)

    assert store.record_measurement(0, 0, sand)
    assert store.record_measurement(0, 0, sand)
    assert store.exploration_stats() == (1, 2)
    assert not store.is_fully_explored()

    store.record_measurement(1, 0, Measure(ground=Ground.NICHTS))
    assert store.is_fully_explored()
    assert store.is_impassable((1, 0))


def test_out_of_bounds_measurement_dropped():
    store = make_store(2, 2)

    assert not store.record_measurement(5, 0, Measure(ground=Ground.SAND))
    assert store.exploration_stats() == (0, 4)


def test_unknown_world_is_never_complete():
    store = WorldStateStore()

    assert not store.world_size_known()
    assert not store.is_fully_explored()


def test_positions_are_copies():
    store = make_store()
    position = Position(x=1, y=1, direction=Direction.NORTH)
    store.set_agent_position("a", position)

    snapshot = store.get_agent_position("a")
    snapshot.x = 2

    assert store.get_agent_position("a").x == 1
    assert store.set_agent_direction("a", Direction.WEST)
    assert store.get_agent_position("a").direction == Direction.WEST
    assert not store.set_agent_direction("ghost", Direction.WEST)


def test_unregister_releases_everything():
    store = make_store()
    store.register_agent("a", object())
    store.set_agent_position("a", Position(x=0, y=0, direction=Direction.EAST))
    store.try_reserve((1, 0), "a")
    store.try_reserve((2, 0), "a")

    store.unregister_agent("a")

    assert store.get_agent("a") is None
    assert store.get_agent_position("a") is None
    assert store.reservations_snapshot() == {}
