from datetime import datetime, timezone

import pytest

from chitfund.core.auction import AuctionStatus
from chitfund.core.errors import ConcurrencyConflict
from chitfund.core.ledger import PaymentStatus
from chitfund.core.service import ChitFundService
from chitfund.core.storage import StorageManager

NOW = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def temp_data_dir(tmp_path):
    """Create a temporary directory for fund data."""
    data_dir = tmp_path / "fund_data"
    data_dir.mkdir()
    return data_dir


def open_service(data_dir):
    return ChitFundService(StorageManager(data_dir=data_dir), clock=lambda: NOW)


def run_first_period(service):
    service.create_group("g1", "Fund", 50_000, 5, 2_500, 10_000)
    for i in range(1, 6):
        service.add_member("g1", f"m{i}", f"Member {i}")
    service.activate_group("g1")
    service.schedule_auction("g1", 1, auction_id="a1")
    service.start_auction("a1")
    service.place_bid("a1", "m1", 6_500)
    service.place_bid("a1", "m2", 4_000)
    return service.close_auction("a1")


def test_fund_state_survives_restart(temp_data_dir):
    """Groups, auctions, ledger and rankings are preserved across restarts."""
    # 1. First process settles a period and records a payment
    service_a = open_service(temp_data_dir)
    run_first_period(service_a)
    service_a.record_payment("g1", "m2", 1, 9_000, "Cash")
    service_a.storage.close()

    # 2. Second process sees the same state
    service_b = open_service(temp_data_dir)

    group = service_b.get_group("g1")
    assert group.get_member("m1").won_in_period == 1
    assert group.completed_periods == 1

    auction = service_b.get_auction("a1")
    assert auction.status == AuctionStatus.CLOSED
    assert auction.winner_id == "m1"
    assert [b.member_id for b in auction.bids] == ["m1", "m2"]
    assert auction.dividend_per_member == 1_000

    entries = {e.member_id: e for e in service_b.list_entries("g1", 1)}
    assert len(entries) == 5
    assert entries["m2"].status == PaymentStatus.PAID
    assert entries["m2"].partial_payments[0].paid_at == NOW
    assert entries["m1"].is_winner

    rankings = service_b.get_rankings("g1")
    assert rankings[0].member_id == "m2"

    service_b.storage.close()


def test_retried_close_after_restart(temp_data_dir):
    """A close retried by another process never duplicates ledger entries."""
    service_a = open_service(temp_data_dir)
    run_first_period(service_a)
    service_a.storage.close()

    service_b = open_service(temp_data_dir)
    result = service_b.close_auction("a1")

    assert result.created == ()
    assert len(result.skipped) == 5
    assert len(service_b.list_entries("g1")) == 5
    service_b.storage.close()


def test_stale_writer_conflicts(temp_data_dir):
    """Two storage handles on one database detect lost updates."""
    first = StorageManager(data_dir=temp_data_dir)
    service = ChitFundService(first, clock=lambda: NOW)
    run_first_period(service)

    second = StorageManager(data_dir=temp_data_dir)
    stale = second.ledger.get("g1", "m3", 1)

    service.record_payment("g1", "m3", 1, 1_000, "Cash")

    service.payment_ledger.record_payment(stale, 2_000, "Cash", NOW)
    with pytest.raises(ConcurrencyConflict):
        second.ledger.save(stale)

    assert first.ledger.get("g1", "m3", 1).paid_amount == 1_000
    first.close()
    second.close()
