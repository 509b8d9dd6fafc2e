from __future__ import annotations

from typing import Any, Dict, List, Tuple, Union

from pydantic import BaseModel, Field


class Client(BaseModel):
    email: str = ""
    sub_id: str = Field("", description="subscription identifier, shared across inbounds")
    client_id: str = Field("", description="uuid / trojan password / email fallback")
    enable: bool = True


class Inbound(BaseModel):
    id: int
    remark: str = ""
    protocol: str = ""
    clients: List[Client] = Field(default_factory=list)


class ClientMatch(BaseModel):
    client: Client
    inbound_id: int
    inbound_remark: str = ""

    @property
    def key(self) -> Tuple[int, str]:
        return (self.inbound_id, self.client.client_id)


class TrafficRecord(BaseModel):
    up: int = 0
    down: int = 0
    total: int = Field(0, description="quota in bytes, 0 = unlimited")
    expiry_time: int = Field(0, description="ms since epoch, 0 = never")
    enable: bool = True

    email: str = ""
    inbound_id: int = 0
    inbound_remark: str = ""
    client_id: str = ""


class AggregatedTraffic(BaseModel):
    total_up: int
    total_down: int
    total_used: int
    total_limit: int
    remaining: int
    usage_percent: Union[str, int] = Field(0, description='"40.00" style string, 0 when unlimited')
    expiry_time: int = 0
    enabled: bool = True
    inbound_count: int = 0
    inbound_ids: List[int] = Field(default_factory=list)
    inbound_remarks: List[str] = Field(default_factory=list)
    clients: List[Dict[str, Any]] = Field(default_factory=list)

    def to_api(self) -> Dict[str, Any]:
        return {
            "totalUp": self.total_up,
            "totalDown": self.total_down,
            "totalUsed": self.total_used,
            "totalLimit": self.total_limit,
            "remaining": self.remaining,
            "usagePercent": self.usage_percent,
            "expiryTime": self.expiry_time,
            "enabled": self.enabled,
            "inboundCount": self.inbound_count,
            "inboundIds": list(self.inbound_ids),
            "inboundRemarks": list(self.inbound_remarks),
            "clients": [dict(c) for c in self.clients],
        }
