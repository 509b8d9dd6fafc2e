from __future__ import annotations

from typing import Dict, Sequence, Union

from ..models import AggregatedTraffic, TrafficRecord


def usage_percent(used: int, limit: int) -> Union[str, int]:
    if limit > 0:
        return f"{used / limit * 100:.2f}"
    return 0


def aggregate_traffic(records: Sequence[TrafficRecord]) -> AggregatedTraffic:
    """Merge per-client counters of one subscription.

    Quota, expiry and enabled flag come from the first record: upstream is
    assumed to give every client of a subscription the same quota, and
    divergent values are not reconciled. ``remaining`` goes negative when
    the subscription is over quota.
    """
    if not records:
        raise ValueError("aggregate_traffic needs at least one record")

    first = records[0]
    total_up = sum(int(r.up) for r in records)
    total_down = sum(int(r.down) for r in records)
    total_used = total_up + total_down
    total_limit = int(first.total)
    # one entry per contributing inbound, however many clients it holds
    remarks: Dict[int, str] = {}
    for r in records:
        remarks.setdefault(r.inbound_id, r.inbound_remark)

    return AggregatedTraffic(
        total_up=total_up,
        total_down=total_down,
        total_used=total_used,
        total_limit=total_limit,
        remaining=total_limit - total_used,
        usage_percent=usage_percent(total_used, total_limit),
        expiry_time=int(first.expiry_time),
        enabled=bool(first.enable),
        inbound_count=len(remarks),
        inbound_ids=list(remarks),
        inbound_remarks=list(remarks.values()),
        clients=[
            {
                "email": r.email,
                "inboundId": r.inbound_id,
                "inboundRemark": r.inbound_remark,
                "clientId": r.client_id,
            }
            for r in records
        ],
    )
