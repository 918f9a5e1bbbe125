import itertools

import pytest

from partyrounds.engine.errors import IntegrityViolation
from partyrounds.services.allocation import (
    DENY_INSUFFICIENT_FUNDS,
    DENY_NOT_IN_OFFER,
    DENY_SOLD_OUT,
    ShopRequest,
    allocate_positions,
    allocate_shop,
    verify_permutation,
)


def test_wrap_around_takes_next_free_slot():
    result = allocate_positions(["P1", "P2", "P3"], {"P1": 2, "P2": 2, "P3": 1})
    assert result == {"P1": 2, "P2": 3, "P3": 1}


def test_search_wraps_back_to_first_slot():
    result = allocate_positions(["A", "B", "C"], {"A": 3, "B": 3, "C": 3})
    assert result == {"A": 3, "B": 1, "C": 2}


@pytest.mark.parametrize("n", [1, 2, 4, 7])
def test_positions_always_form_a_permutation(n):
    order = [f"p{i}" for i in range(n)]
    wishes = [None, 0, 1, n, n + 5, -2]
    for combo in itertools.islice(itertools.product(wishes, repeat=n), 200):
        result = allocate_positions(order, dict(zip(order, combo)))
        assert sorted(result.values()) == list(range(1, n + 1))


def test_verify_permutation_rejects_duplicates():
    with pytest.raises(IntegrityViolation):
        verify_permutation([1, 1, 3], 3)


def test_more_players_than_slots_is_an_integrity_violation():
    with pytest.raises(IntegrityViolation):
        allocate_positions(["a", "b", "c"], {}, slot_count=2)


def _req(rank, balance, item="Totem"):
    return ShopRequest(player_id=f"P{rank}", seat=rank, display_name=f"P{rank}", rank=rank,
                       item_name=item, balance=balance)


def test_scarce_item_goes_down_the_priority_list():
    allocation = allocate_shop([_req(3, 100), _req(1, 15), _req(2, 25)], ["Totem"], lambda item, req: 20)

    by_player = {d.player_id: d for d in allocation.decisions}
    assert by_player["P1"].reason_code == DENY_INSUFFICIENT_FUNDS
    assert by_player["P2"].approved and by_player["P2"].cost == 20
    assert by_player["P3"].reason_code == DENY_SOLD_OUT
    assert allocation.remaining == {"Totem": 0}


def test_higher_priority_wins_regardless_of_submission_order():
    for requests in ([_req(1, 50), _req(2, 50)], [_req(2, 50), _req(1, 50)]):
        allocation = allocate_shop(requests, ["Totem"], lambda item, req: 20)
        assert [d.player_id for d in allocation.approved] == ["P1"]


def test_item_outside_offer_is_denied():
    allocation = allocate_shop([_req(1, 50, item="Hache Runique")], ["Totem"], lambda item, req: 20)
    assert allocation.denied[0].reason_code == DENY_NOT_IN_OFFER
