"""Append-only campaign history in JSONL format."""

import json
import os
from dataclasses import asdict
from datetime import datetime, timezone
from typing import List, Optional

from rampbench.models import BusinessEstimate, Campaign, EvidenceEvent


def create_event(
    campaign: Campaign, estimate: Optional[BusinessEstimate] = None
) -> EvidenceEvent:
    """Build an EvidenceEvent for a finished campaign, stamped with UTC now.

    Args:
        campaign: The campaign to summarize.
        estimate: Its business estimate, if one could be computed.

    Returns:
        A populated EvidenceEvent.
    """
    ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    return EvidenceEvent(
        ts=ts,
        url=campaign.url,
        status=campaign.status.value if campaign.status else "running",
        breaking_point=campaign.breaking_point,
        last_healthy=campaign.last_healthy,
        steps=len(campaign.steps),
        tier=estimate.tier if estimate else None,
    )


def append_event(event: EvidenceEvent, log_path: str) -> None:
    """Append a single event as a JSONL line.

    Creates the file (and parent directories) if it does not exist.
    Never overwrites existing entries.
    """
    parent = os.path.dirname(log_path)
    if parent and not os.path.isdir(parent):
        os.makedirs(parent, exist_ok=True)

    line = json.dumps(asdict(event))

    with open(log_path, "a") as f:
        f.write(line + "\n")


def read_events(log_path: str) -> List[EvidenceEvent]:
    """Read all events from a JSONL history log; malformed lines are skipped."""
    if not os.path.isfile(log_path):
        return []

    events = []
    with open(log_path, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(raw, dict):
                continue
            events.append(EvidenceEvent(
                ts=raw.get("ts", ""),
                url=raw.get("url", ""),
                status=raw.get("status", ""),
                breaking_point=raw.get("breaking_point"),
                last_healthy=raw.get("last_healthy"),
                steps=raw.get("steps", 0),
                tier=raw.get("tier"),
            ))
    return events
