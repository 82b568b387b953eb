"""Connection update events emitted by the monitor and the risk scanner."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from app.clock import utcnow
from app.services.intelligence.models import ConnectionStatus


class UpdateType(str, Enum):
    NEW_CONNECTION = "new_connection"
    RISK_CHANGE = "risk_change"
    CASCADE_UPDATE = "cascade_update"


STATUS_MESSAGES: Dict[ConnectionStatus, str] = {
    ConnectionStatus.CRITICAL: "Critical cascade risk detected. Immediate attention required.",
    ConnectionStatus.WARNING: "Elevated cascade risk. Monitor closely.",
    ConnectionStatus.MONITORING: "Active connections detected. Continuing monitoring.",
    ConnectionStatus.STABLE: "No active connections detected. Risk level is stable.",
}


@dataclass
class ConnectionUpdate:
    type: UpdateType
    alert_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: utcnow().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "alert_id": self.alert_id,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }
