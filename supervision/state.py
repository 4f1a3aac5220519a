#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file supervision/state.py
@brief Состояния процессов и их runtime-данные
@details ProcessRuntimeState принадлежит только супервизору и меняется под его блокировкой.
         Наружу отдаются неизменяемые снимки ProcessStatus.
"""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from utils.errors import ProcessFailure


class ProcessState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"
    MEMORY_EXCEEDED = "memory_exceeded"
    RESTARTING = "restarting"
    FAILED_PERMANENTLY = "failed_permanently"
    STOPPING = "stopping"

    @property
    def is_active(self) -> bool:
        return self in _ACTIVE_STATES


_ACTIVE_STATES = frozenset(
    {
        ProcessState.STARTING,
        ProcessState.RUNNING,
        ProcessState.CRASHED,
        ProcessState.MEMORY_EXCEEDED,
        ProcessState.RESTARTING,
    }
)


class RestartDecision(str, enum.Enum):
    RESTART = "restart"
    GIVE_UP = "give_up"
    IGNORED = "ignored"


class RestartHistory:
    """
    Sliding window of failure timestamps for one process.
    """

    def __init__(self) -> None:
        self._timestamps: Deque[float] = deque()

    def prune(self, now: float, window: float) -> None:
        cutoff = now - window
        while self._timestamps and self._timestamps[0] < cutoff:
            self._timestamps.popleft()

    def record(self, now: float) -> None:
        self._timestamps.append(now)

    def count(self, now: float, window: float) -> int:
        cutoff = now - window
        return sum(1 for ts in self._timestamps if ts >= cutoff)

    def clear(self) -> None:
        self._timestamps.clear()

    def __len__(self) -> int:
        return len(self._timestamps)


@dataclass
class ProcessRuntimeState:
    name: str
    state: ProcessState = ProcessState.STOPPED
    pid: Optional[int] = None
    started_at: Optional[float] = None
    started_at_wall: Optional[float] = None
    restart_history: RestartHistory = field(default_factory=RestartHistory)
    memory_bytes: Optional[int] = None
    last_exit_code: Optional[int] = None
    last_error: Optional[ProcessFailure] = None
    generation: int = 0


@dataclass(frozen=True)
class ProcessStatus:
    name: str
    state: ProcessState
    pid: Optional[int]
    restarts_in_window: int
    max_restarts: int
    uptime_seconds: Optional[float]
    memory_bytes: Optional[int]
    last_exit_code: Optional[int]
    last_error: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "pid": self.pid,
            "restarts_in_window": self.restarts_in_window,
            "max_restarts": self.max_restarts,
            "uptime_seconds": None if self.uptime_seconds is None else round(self.uptime_seconds, 3),
            "memory_bytes": self.memory_bytes,
            "last_exit_code": self.last_exit_code,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class ActionResult:
    name: str
    action: str
    ok: bool
    changed: bool
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "action": self.action,
            "ok": self.ok,
            "changed": self.changed,
            "detail": self.detail,
        }
