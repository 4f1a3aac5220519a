#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file supervision/spec.py
@brief Описание процессов под надзором и их политики перезапуска
@details ProcessSpec и RestartPolicy неизменяемы и создаются один раз при загрузке конфига.
         Поля совместимы с PM2 ecosystem: max_memory_restart ("300M"), min_uptime ("10s"),
         restart_delay (миллисекунды), max_restarts.
"""

from __future__ import annotations

import re
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from utils.errors import ConfigurationError

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$", re.IGNORECASE)
_MEMORY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kmg])?b?\s*$", re.IGNORECASE)

_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_MEMORY_UNITS = {"k": 1024, "m": 1024 ** 2, "g": 1024 ** 3}

_INTERPRETERS = {
    ".py": sys.executable,
    ".js": "node",
    ".sh": "bash",
}


def parse_duration(raw: Any, *, bare_unit: str = "ms", field_name: str = "duration") -> float:
    """
    Приводит длительность к секундам. Числа без единиц трактуются в bare_unit
    (для PM2-полей это миллисекунды): 5000 -> 5.0, "10s" -> 10.0, "5m" -> 300.0.
    """
    if isinstance(raw, bool):
        raise ConfigurationError(f"{field_name}: expected duration, got {raw!r}")
    if isinstance(raw, (int, float)):
        value = float(raw) * _DURATION_UNITS[bare_unit]
    elif isinstance(raw, str):
        match = _DURATION_RE.match(raw)
        if not match:
            raise ConfigurationError(f"{field_name}: cannot parse duration {raw!r}")
        unit = (match.group(2) or bare_unit).lower()
        value = float(match.group(1)) * _DURATION_UNITS[unit]
    else:
        raise ConfigurationError(f"{field_name}: expected duration, got {raw!r}")
    if value < 0:
        raise ConfigurationError(f"{field_name} must be >= 0, got {raw!r}")
    return value


def parse_memory(raw: Any, *, field_name: str = "max_memory_restart") -> Optional[int]:
    """Возвращает лимит памяти в байтах ("300M" -> 314572800), None если лимит не задан."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ConfigurationError(f"{field_name}: expected memory size, got {raw!r}")
    if isinstance(raw, (int, float)):
        value = int(raw)
    elif isinstance(raw, str):
        match = _MEMORY_RE.match(raw)
        if not match:
            raise ConfigurationError(f"{field_name}: cannot parse memory size {raw!r}")
        unit = (match.group(2) or "").lower()
        value = int(float(match.group(1)) * _MEMORY_UNITS.get(unit, 1))
    else:
        raise ConfigurationError(f"{field_name}: expected memory size, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{field_name} must be > 0, got {raw!r}")
    return value


@dataclass(frozen=True)
class RestartPolicy:
    """
    Crash-loop protection: at most max_restarts failures within `window` seconds.
    Failures are always counted over `window`; `min_uptime` only marks shorter runs
    as unstable in the log.
    """

    max_restarts: int = 10
    window: float = 300.0
    min_uptime: float = 10.0
    restart_delay: float = 5.0

    def __post_init__(self) -> None:
        if isinstance(self.max_restarts, bool) or not isinstance(self.max_restarts, int):
            raise ConfigurationError(f"max_restarts must be an integer, got {self.max_restarts!r}")
        if self.max_restarts < 0:
            raise ConfigurationError(f"max_restarts must be >= 0, got {self.max_restarts}")
        for name in ("window", "min_uptime", "restart_delay"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0, got {getattr(self, name)}")


@dataclass(frozen=True)
class ProcessSpec:
    name: str
    command: Tuple[str, ...]
    working_dir: Optional[Path] = None
    env: Mapping[str, str] = field(default_factory=dict)
    max_memory_bytes: Optional[int] = None
    restart_policy: RestartPolicy = field(default_factory=RestartPolicy)
    log_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("process name must not be empty")
        if not self.command:
            raise ConfigurationError(f"[{self.name}] command must not be empty")
        object.__setattr__(self, "command", tuple(str(part) for part in self.command))
        object.__setattr__(self, "env", MappingProxyType({str(k): str(v) for k, v in self.env.items()}))


def _build_command(name: str, raw: Dict[str, Any]) -> Tuple[str, ...]:
    command = raw.get("command")
    args = raw.get("args") or []
    if isinstance(args, str):
        args = shlex.split(args)

    if command:
        parts = shlex.split(command) if isinstance(command, str) else [str(p) for p in command]
        return tuple(parts) + tuple(str(a) for a in args)

    script = raw.get("script")
    if not script:
        raise ConfigurationError(f"[{name}] either 'script' or 'command' is required")
    interpreter = raw.get("interpreter")
    if interpreter is None:
        interpreter = _INTERPRETERS.get(Path(str(script)).suffix.lower())
    head = [interpreter] if interpreter and interpreter != "none" else []
    return tuple(head + [str(script)] + [str(a) for a in args])


def build_process_spec(
    raw: Dict[str, Any],
    defaults: Optional[Dict[str, Any]] = None,
    log_dir: Optional[Path] = None,
) -> ProcessSpec:
    """Собирает ProcessSpec из одной записи supervisor.processes."""
    if not isinstance(raw, dict):
        raise ConfigurationError(f"process entry must be a mapping, got {raw!r}")
    merged = dict(defaults or {})
    merged.update(raw)

    name = merged.get("name")
    if not name or not isinstance(name, str):
        raise ConfigurationError(f"process entry without a name: {raw!r}")

    max_restarts = merged.get("max_restarts", 10)
    try:
        max_restarts = int(max_restarts)
    except (TypeError, ValueError):
        raise ConfigurationError(f"[{name}] max_restarts must be an integer, got {max_restarts!r}")

    policy = RestartPolicy(
        max_restarts=max_restarts,
        window=parse_duration(merged.get("restart_window", "5m"), bare_unit="s", field_name=f"{name}.restart_window"),
        min_uptime=parse_duration(merged.get("min_uptime", "10s"), field_name=f"{name}.min_uptime"),
        restart_delay=parse_duration(merged.get("restart_delay", 5000), field_name=f"{name}.restart_delay"),
    )

    env = merged.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigurationError(f"[{name}] env must be a mapping")

    cwd = merged.get("cwd") or merged.get("working_dir")
    return ProcessSpec(
        name=name,
        command=_build_command(name, merged),
        working_dir=Path(cwd).expanduser() if cwd else None,
        env=env,
        max_memory_bytes=parse_memory(merged.get("max_memory_restart"), field_name=f"{name}.max_memory_restart"),
        restart_policy=policy,
        log_dir=log_dir,
    )


def load_process_specs(config: Dict[str, Any]) -> List[ProcessSpec]:
    """
    Разворачивает секцию supervisor.processes в список ProcessSpec.
    Порядок сохраняется, имена должны быть уникальны.
      supervisor:
        defaults: {max_restarts: 10, min_uptime: 10s, restart_delay: 5000}
        processes:
          - name: worker
            script: src/worker.py
            max_memory_restart: 300M
    """
    sup_cfg = config.get("supervisor") or {}
    defaults = sup_cfg.get("defaults") or {}
    log_directory = sup_cfg.get("log_directory")
    log_dir = Path(log_directory).expanduser() if log_directory else None

    specs: List[ProcessSpec] = []
    seen = set()
    for raw in sup_cfg.get("processes") or []:
        if isinstance(raw, dict) and raw.get("enabled") is False:
            continue
        spec = build_process_spec(raw, defaults, log_dir)
        if spec.name in seen:
            raise ConfigurationError(f"duplicate process name: {spec.name}")
        seen.add(spec.name)
        specs.append(spec)
    return specs
