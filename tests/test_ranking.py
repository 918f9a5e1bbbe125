import random

from partyrounds.services.ranking import ASC, DESC, BidInput, effective_bid, rank_bids


def _bid(seat, requested, balance=100):
    return BidInput(player_id=f"p{seat}", seat=seat, display_name=f"J{seat}", requested=requested, balance=balance)


def test_tie_broken_by_ascending_seat_then_lower_bid():
    entries = rank_bids([_bid(1, 50), _bid(2, 50), _bid(3, 30)], ASC)

    assert [(e.rank, e.seat) for e in entries] == [(1, 1), (2, 2), (3, 3)]
    assert entries[0].tie_group_id == entries[1].tie_group_id != 0
    assert entries[2].tie_group_id == 0
    assert [e.effective_bid for e in entries] == [50, 50, 30]


def test_direction_flips_only_after_real_tie_groups():
    bids = [_bid(1, 40), _bid(2, 40), _bid(3, 30), _bid(4, 20), _bid(5, 20)]
    entries = rank_bids(bids, ASC)
    # groupe 40 : ascendant ; 30 seul ne change rien ; groupe 20 : descendant
    assert [e.seat for e in entries] == [1, 2, 3, 5, 4]

    entries = rank_bids(bids, DESC)
    assert [e.seat for e in entries] == [2, 1, 3, 4, 5]


def test_ranking_is_deterministic_regardless_of_input_order():
    bids = [_bid(s, random.Random(s).choice([0, 5, 10])) for s in range(1, 9)]
    expected = [(e.rank, e.seat, e.tie_group_id) for e in rank_bids(bids, ASC)]
    for seed in range(5):
        shuffled = list(bids)
        random.Random(seed).shuffle(shuffled)
        assert [(e.rank, e.seat, e.tie_group_id) for e in rank_bids(shuffled, ASC)] == expected


def test_over_bid_is_forfeited_not_capped():
    amount, note = effective_bid(120, 100)
    assert amount == 0
    assert "120" in note

    entries = rank_bids([_bid(1, 120), _bid(2, 10)], ASC)
    assert entries[0].seat == 2
    assert entries[1].effective_bid == 0


def test_missing_bid_counts_as_zero_with_note():
    entries = rank_bids([_bid(1, None), _bid(2, 0)], ASC)
    assert [e.effective_bid for e in entries] == [0, 0]
    assert entries[0].note == "Aucune mise soumise"
    assert entries[0].tie_group_id == entries[1].tie_group_id == 1
