#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file readiness/__init__.py
@brief Диагностика готовности внешних зависимостей
@details Экспортирует модели отчёта, загрузку проверок и прогон диагностики
"""

from .models import CheckResult, CheckStatus, Report
from .validators import CredentialValidator, redact
from .probes import HttpProbe, LiveProbe
from .checks import HealthCheckSpec, load_health_checks, snapshot_from_env
from .diagnostics import diagnose, probe_live, run, run_sync, validate_static

__all__ = [
    'CheckResult',
    'CheckStatus',
    'Report',
    'CredentialValidator',
    'redact',
    'HttpProbe',
    'LiveProbe',
    'HealthCheckSpec',
    'load_health_checks',
    'snapshot_from_env',
    'diagnose',
    'probe_live',
    'run',
    'run_sync',
    'validate_static',
]
