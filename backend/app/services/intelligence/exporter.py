"""
Snapshot export.

Two formats:
- JSON: full-fidelity envelope around ``IntelligenceSnapshot.to_dict()``
- Text: flattened, line-oriented table with sections in a fixed order:
  primary alert, connected factors, impact cascade, risk assessment,
  risk factors, recommended actions
"""

import csv
import io
from datetime import datetime
from typing import Any, Dict, Optional

from app.clock import utcnow
from app.services.intelligence.models import IntelligenceSnapshot

EXPORT_VERSION = "1.0"

TEXT_SECTIONS = (
    "PRIMARY ALERT",
    "CONNECTED FACTORS",
    "IMPACT CASCADE",
    "RISK ASSESSMENT",
    "RISK FACTORS",
    "RECOMMENDED ACTIONS",
)


def export_json(
    snapshot: IntelligenceSnapshot,
    exported_at: Optional[datetime] = None
) -> Dict[str, Any]:
    return {
        "alert_id": snapshot.primary_alert.id,
        "exported_at": (exported_at or utcnow()).isoformat(),
        "version": EXPORT_VERSION,
        "data": snapshot.to_dict(),
    }


def export_text(
    snapshot: IntelligenceSnapshot,
    exported_at: Optional[datetime] = None
) -> str:
    """Render the snapshot as comma-separated sections."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    primary = snapshot.primary_alert
    cascade = snapshot.impact_cascade
    risk = snapshot.risk_assessment

    writer.writerow(["Interconnected Intelligence Export"])
    writer.writerow([f"Alert ID: {primary.id}"])
    writer.writerow([f"Generated: {(exported_at or utcnow()).isoformat()}"])
    writer.writerow([])

    writer.writerow([TEXT_SECTIONS[0]])
    writer.writerow(["Type", "Severity", "Timestamp"])
    writer.writerow([primary.type.value, primary.severity.value, primary.timestamp.isoformat()])
    writer.writerow([])

    writer.writerow([TEXT_SECTIONS[1]])
    writer.writerow(["ID", "Type", "Severity", "Correlation Score", "Hop", "Timestamp"])
    for factor in snapshot.connected_factors:
        writer.writerow([
            factor.id,
            factor.type.value,
            factor.severity.value,
            f"{factor.correlation_score:.4f}",
            factor.hop,
            factor.timestamp.isoformat(),
        ])
    writer.writerow([])

    writer.writerow([TEXT_SECTIONS[2]])
    writer.writerow(["Metric", "Value"])
    writer.writerow(["Cascading Impact", f"{cascade.cascading_impact}%"])
    writer.writerow(["Total Factors", cascade.total_factors])
    writer.writerow(["Supply Chain Affected", "Yes" if cascade.affected_supply_chain else "No"])
    writer.writerow([])

    writer.writerow([TEXT_SECTIONS[3]])
    writer.writerow(["Overall Risk", "Priority"])
    writer.writerow([risk.overall_risk, risk.mitigation_priority.value])
    writer.writerow([])

    writer.writerow([TEXT_SECTIONS[4]])
    for risk_factor in risk.risk_factors:
        writer.writerow([risk_factor])
    writer.writerow([])

    writer.writerow([TEXT_SECTIONS[5]])
    for idx, action in enumerate(snapshot.recommended_actions, start=1):
        writer.writerow([f"{idx}. {action}"])

    return buffer.getvalue()
