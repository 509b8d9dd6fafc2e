import pytest

from app.models import TrafficRecord
from app.services.aggregate import aggregate_traffic, usage_percent


def _rec(up, down, total=1000, inbound_id=1, remark="A", **kw):
    return TrafficRecord(up=up, down=down, total=total, inbound_id=inbound_id, inbound_remark=remark, **kw)


def test_sums_and_remaining():
    agg = aggregate_traffic([_rec(100, 200, remark="A"), _rec(50, 50, inbound_id=2, remark="B")])
    assert agg.total_up == 150
    assert agg.total_down == 250
    assert agg.total_used == 400
    assert agg.total_limit == 1000
    assert agg.remaining == 600
    assert agg.usage_percent == "40.00"
    assert agg.inbound_count == 2
    assert agg.inbound_remarks == ["A", "B"]


def test_remaining_goes_negative_over_quota():
    agg = aggregate_traffic([_rec(800, 500, total=1000)])
    assert agg.total_used == 1300
    assert agg.remaining == -300
    assert agg.usage_percent == "130.00"


@pytest.mark.parametrize("records", [
    [_rec(0, 0, total=0)],
    [_rec(10**12, 5, total=0), _rec(3, 4, total=0, inbound_id=2)],
])
def test_unlimited_quota_reports_zero_percent(records):
    agg = aggregate_traffic(records)
    assert agg.usage_percent == 0
    assert agg.remaining == -agg.total_used


def test_quota_and_expiry_come_from_first_record():
    first = _rec(1, 1, total=5000, expiry_time=111, enable=False)
    second = _rec(1, 1, total=9000, inbound_id=2, expiry_time=222, enable=True)
    agg = aggregate_traffic([first, second])
    assert agg.total_limit == 5000
    assert agg.expiry_time == 111
    assert agg.enabled is False


def test_order_changes_remarks_not_numbers():
    a = _rec(7, 11, remark="A")
    b = _rec(13, 17, inbound_id=2, remark="B")
    ab = aggregate_traffic([a, b])
    ba = aggregate_traffic([b, a])
    assert (ab.total_up, ab.total_down, ab.total_used, ab.remaining) == (ba.total_up, ba.total_down, ba.total_used, ba.remaining)
    assert ab.inbound_remarks == ["A", "B"]
    assert ba.inbound_remarks == ["B", "A"]


def test_empty_input_rejected():
    with pytest.raises(ValueError):
        aggregate_traffic([])


def test_usage_percent_rounding():
    assert usage_percent(1, 3) == "33.33"
    assert usage_percent(2, 3) == "66.67"
    assert usage_percent(5, 0) == 0


def test_to_api_shape():
    rec = _rec(1, 2, email="a@x", client_id="uuid-1")
    data = aggregate_traffic([rec]).to_api()
    assert set(data) == {
        "totalUp", "totalDown", "totalUsed", "totalLimit", "remaining", "usagePercent",
        "expiryTime", "enabled", "inboundCount", "inboundIds", "inboundRemarks", "clients",
    }
    assert data["clients"] == [{"email": "a@x", "inboundId": 1, "inboundRemark": "A", "clientId": "uuid-1"}]


def test_clients_sharing_an_inbound_count_once():
    records = [
        _rec(1, 1, inbound_id=1, remark="A", email="a1"),
        _rec(2, 2, inbound_id=1, remark="A", email="a2"),
        _rec(3, 3, inbound_id=2, remark="B", email="b1"),
    ]
    agg = aggregate_traffic(records)
    assert agg.inbound_count == 2
    assert agg.inbound_ids == [1, 2]
    assert agg.inbound_remarks == ["A", "B"]
    assert [c["email"] for c in agg.clients] == ["a1", "a2", "b1"]
    assert agg.total_used == 12
