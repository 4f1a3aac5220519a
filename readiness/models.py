#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file readiness/models.py
@brief Результаты проверок готовности и итоговый отчёт
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


class CheckStatus(str, enum.Enum):
    OK = "OK"
    MISSING = "MISSING"
    INVALID_FORMAT = "INVALID_FORMAT"
    PROBE_FAILED = "PROBE_FAILED"
    PROBE_TIMEOUT = "PROBE_TIMEOUT"


@dataclass(frozen=True)
class CheckResult:
    name: str
    status: CheckStatus
    evidence: str = ""
    stage: str = "static"
    elapsed_ms: Optional[float] = None
    timestamp: datetime = field(default_factory=_utc_now)

    @property
    def ok(self) -> bool:
        return self.status is CheckStatus.OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "evidence": self.evidence,
            "stage": self.stage,
            "elapsed_ms": self.elapsed_ms,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class Report:
    """
    Итог одного прогона диагностики. Новый объект на каждый прогон, без кэширования.
    """

    results: Tuple[CheckResult, ...]
    created_at: datetime = field(default_factory=_utc_now)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> List[str]:
        return [r.name for r in self.results if not r.ok]

    def __iter__(self) -> Iterator[CheckResult]:
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, name: str) -> CheckResult:
        for result in self.results:
            if result.name == name:
                return result
        raise KeyError(name)

    def statuses(self) -> Dict[str, CheckStatus]:
        return {r.name: r.status for r in self.results}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.created_at.isoformat(),
            "ok": self.ok,
            "total": len(self.results),
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }
