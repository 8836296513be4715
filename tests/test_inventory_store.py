import pytest

from skybook.errors import ConflictError, NotFoundError
from skybook.models.domain import Seat
from skybook.stores.inventory import InventoryStore


def test_flight_with_available_seats(world) -> None:
    store = world.inventory

    result = store.get_flight_with_seats(1)

    assert result.flight.flight_number == "HY101"
    assert [seat.id for seat in result.seats] == list(range(1, 11))


def test_flight_seats_filters_and_limit(world) -> None:
    store = world.inventory
    store.flip_seats([1, 2], available=False)

    assert [seat.id for seat in store.get_flight_with_seats(1, limit=3).seats] == [3, 4, 5]
    assert len(store.get_flight_with_seats(1, available_only=False).seats) == 10
    assert store.get_flight_with_seats(1, class_id=2).seats == []


def test_unknown_flight_raises_not_found() -> None:
    store = InventoryStore()
    with pytest.raises(NotFoundError, match="Flight not found"):
        store.get_flight_with_seats(404)


def test_flip_is_all_or_nothing(world) -> None:
    store = world.inventory
    store.flip_seats([3], available=False)

    with pytest.raises(ConflictError):
        store.flip_seats([1, 2, 3], available=False)

    seats = {seat.id: seat for seat in store.get_seats([1, 2, 3])}
    assert seats[1].is_available is True
    assert seats[2].is_available is True
    assert seats[3].is_available is False


def test_flip_back_releases_seats(world) -> None:
    store = world.inventory
    store.flip_seats([1, 2], available=False)

    released = store.flip_seats([1, 2], available=True)

    assert all(seat.is_available for seat in released)


def test_seat_numbers_are_unique_per_plane(world) -> None:
    store = world.inventory

    with pytest.raises(ConflictError):
        store.add_seats([Seat(id=99, plane_id=1, seat_number="101", class_id=1)])


def test_available_seats_keeps_free_seats_of_the_flight(world) -> None:
    store = world.inventory
    store.flip_seats([2], available=False)
    flight = store.get_flight(1)

    assert [seat.id for seat in store.available_seats(flight, [1, 2, 3, 50])] == [1, 3]


def test_flip_rejects_duplicate_seat_ids(world) -> None:
    store = world.inventory

    with pytest.raises(ConflictError, match="Duplicate seat ids"):
        store.flip_seats([1, 1], available=False)

    assert store.get_seats([1])[0].is_available is True
