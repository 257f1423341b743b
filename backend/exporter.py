"""
Export completed sleep sessions to an external health store.

Each session is saved on its own; a failure is recorded for that session and
the rest of the batch still runs.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable

from models import SleepSession, to_iso

logger = logging.getLogger(__name__)


class SleepSampleSink(ABC):
    @abstractmethod
    async def save(self, session_id: str, start: datetime, end: datetime) -> None: ...


class JsonLinesSink(SleepSampleSink):
    """Appends one 'in bed' sample per line, tagged with the session id."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def save(self, session_id: str, start: datetime, end: datetime) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        sample = {
            "external_id": session_id,
            "category": "in_bed",
            "start": to_iso(start),
            "end": to_iso(end),
        }
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(sample) + "\n")


@dataclass
class ExportReport:
    exported: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


async def export_sessions(sessions: Iterable[SleepSession], sink: SleepSampleSink) -> ExportReport:
    report = ExportReport()
    for s in sessions:
        if s.end_time is None:
            report.skipped.append(s.id)
            continue
        try:
            await sink.save(s.id, s.start_time, s.end_time)
        except Exception as e:
            logger.error("export of session %s failed: %s", s.id, e)
            report.failed[s.id] = str(e) or e.__class__.__name__
            continue
        report.exported.append(s.id)
    return report
