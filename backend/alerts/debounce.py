"""
Debounce Gate
Suppresses repeat alerts for the same agent and configuration.

The cooldown lives entirely in alert history: an unresolved alert for the
same (agent, configuration) inside the window blocks a new one. The store
does the check and the insert in one step so concurrent reports cannot
both get through.
"""

import logging
from typing import Optional

from core.models import MetricSnapshot

from .models import AlertCandidate, AlertRecord
from .stores import AlertHistoryStore

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_MINUTES = 15


class DebounceGate:
    """
    Usage:
        gate = DebounceGate(history, cooldown_minutes=15)
        record = await gate.admit(agent_id, candidate, snapshot)
        if record is None:
            ...  # duplicate, suppressed
    """

    def __init__(self, history: AlertHistoryStore, cooldown_minutes: int = DEFAULT_COOLDOWN_MINUTES):
        self.history = history
        self.cooldown_minutes = cooldown_minutes
        self.suppressed = 0

    async def admit(
        self,
        agent_id: str,
        candidate: AlertCandidate,
        snapshot: Optional[MetricSnapshot] = None
    ) -> Optional[AlertRecord]:
        """
        Persist the candidate unless it is a duplicate.

        Returns:
            The persisted record, or None when suppressed
        """
        record = AlertRecord.from_candidate(agent_id, candidate, snapshot)
        saved = await self.history.save_alert_if_absent(record, self.cooldown_minutes)

        if saved is None:
            self.suppressed += 1
            logger.info(
                "Suppressed duplicate alert %r for agent %s (cooldown %d min)",
                candidate.alert_name, agent_id, self.cooldown_minutes,
            )
        return saved
