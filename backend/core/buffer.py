"""
In-Memory Buffer
Fast, bounded, agent-keyed storage for recent metric reports.

Purpose:
- The API needs the latest snapshot per agent without a query
- Stats need per-agent counts
- No disk I/O allowed here

This is READ-OPTIMIZED, NOT DURABLE. The SQLite store is the history
indicators are computed from.
"""

from collections import deque
from typing import Dict, List, Optional

from .models import MetricReport


class MetricBuffer:
    """
    In-memory buffer for recent metric reports.

    - Per-agent deques with automatic eviction
    - O(1) append, O(1) latest access

    Usage:
        buffer = MetricBuffer(maxlen=1000)
        buffer.append(report)
        latest = buffer.get_latest("agent-1")
    """

    def __init__(self, maxlen: int = 1000):
        self.maxlen = maxlen
        self._data: Dict[str, deque] = {}

    def append(self, report: MetricReport) -> None:
        """Add single report to buffer"""
        agent_id = report.agent_id

        if agent_id not in self._data:
            self._data[agent_id] = deque(maxlen=self.maxlen)

        self._data[agent_id].append(report)

    def extend(self, reports: List[MetricReport]) -> int:
        """Add multiple reports. Returns count added."""
        for report in reports:
            self.append(report)
        return len(reports)

    def get_latest(self, agent_id: str) -> Optional[MetricReport]:
        """Get most recent report"""
        reports = self._data.get(agent_id)
        if not reports:
            return None
        return reports[-1]

    def count(self, agent_id: str = None) -> int:
        """Get report count"""
        if agent_id:
            return len(self._data.get(agent_id, []))
        return sum(len(d) for d in self._data.values())

    def stats(self) -> dict:
        """Buffer statistics"""
        return {
            "total_reports": self.count(),
            "agents": len(self._data),
            "per_agent": {agent: len(d) for agent, d in self._data.items()}
        }
