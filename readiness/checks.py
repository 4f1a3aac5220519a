#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file readiness/checks.py
@brief Описание обязательных зависимостей и источник снимка конфигурации
@details Набор проверок целиком задаётся секцией diagnostics.checks:
           diagnostics:
             checks:
               - name: openrouter
                 key: OPENROUTER_API_KEY
                 rules: [non_empty, "prefix=sk-or-"]
                 probe:
                   url: https://openrouter.ai/api/v1/auth/key
                   evidence: field:data.label
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from dotenv import dotenv_values

from readiness.probes import HttpProbe, LiveProbe, template_keys
from readiness.validators import CredentialValidator
from utils.errors import ConfigurationError
from utils.logger import log_debug


@dataclass(frozen=True)
class HealthCheckSpec:
    name: str
    key: str
    validator: CredentialValidator
    probe: Optional[LiveProbe] = None

    def __post_init__(self) -> None:
        if not self.name or not self.key:
            raise ConfigurationError("health check needs a name and a key")
        if not isinstance(self.validator, CredentialValidator):
            raise ConfigurationError(f"[{self.name}] health check has no validator")


def build_health_check(raw: Dict[str, Any]) -> HealthCheckSpec:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"health check must be a mapping, got {raw!r}")
    key = raw.get("key") or raw.get("name")
    name = raw.get("name") or key
    if not name:
        raise ConfigurationError(f"health check needs a name or key: {raw!r}")
    try:
        validator = CredentialValidator.from_config(raw.get("rules"))
        probe = HttpProbe.from_config(raw["probe"]) if raw.get("probe") else None
    except ConfigurationError as exc:
        raise ConfigurationError(f"[{name}] {exc}") from exc
    return HealthCheckSpec(name=str(name), key=str(key), validator=validator, probe=probe)


def load_health_checks(config: Dict[str, Any]) -> List[HealthCheckSpec]:
    """Разворачивает diagnostics.checks в список HealthCheckSpec в порядке конфига."""
    diag_cfg = config.get("diagnostics") or {}
    checks: List[HealthCheckSpec] = []
    seen = set()
    for raw in diag_cfg.get("checks") or []:
        check = build_health_check(raw)
        if check.name in seen:
            raise ConfigurationError(f"duplicate health check name: {check.name}")
        seen.add(check.name)
        checks.append(check)
    return checks


def snapshot_from_env(
    keys: Iterable[str],
    env_file: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Optional[str]]:
    """
    Собирает снимок значений по ключам. Значения из .env файла не перекрывают
    уже заданные переменные окружения.
    """
    environ = os.environ if environ is None else environ
    file_values: Dict[str, Optional[str]] = {}
    if env_file and Path(env_file).is_file():
        file_values = dict(dotenv_values(env_file))
        log_debug(f"[diagnostics] загружен {env_file}: {len(file_values)} ключей")

    snapshot: Dict[str, Optional[str]] = {}
    for key in keys:
        value = environ.get(key)
        if value is None:
            value = file_values.get(key)
        snapshot[key] = value
    return snapshot


def snapshot_keys(checks: Iterable[HealthCheckSpec]) -> List[str]:
    """Ключи проверок плюс ключи, на которые ссылаются URL проб ({env:NAME})."""
    keys: List[str] = []
    for check in checks:
        extra = template_keys(check.probe.url) if isinstance(check.probe, HttpProbe) else []
        for key in [check.key, *extra]:
            if key not in keys:
                keys.append(key)
    return keys
