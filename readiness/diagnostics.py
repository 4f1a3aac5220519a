#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file readiness/diagnostics.py
@brief Прогон диагностики готовности: статическая проверка + параллельные живые пробы
@details Ни один сломанный сервис не приводит к исключению: каждый сбой становится
         типизированным CheckResult. Пробы идут параллельно, у каждой свой таймаут,
         поэтому время прогона ограничено самой медленной пробой, а не их суммой.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import aiohttp

from readiness.checks import HealthCheckSpec, load_health_checks, snapshot_from_env, snapshot_keys
from readiness.models import CheckResult, CheckStatus, Report
from readiness.probes import LiveProbe
from readiness.validators import redact
from utils.errors import InvalidCredentialFormat, MissingCredential, ProbeFailure, ProbeTimeout
from utils.logger import log_error, log_info, log_warning

Snapshot = Mapping[str, Optional[str]]


def _check_value(check: HealthCheckSpec, value: Optional[str]) -> str:
    if value is None or value == "":
        raise MissingCredential(check.key)
    outcome = check.validator(value)
    if not outcome.ok:
        raise InvalidCredentialFormat(check.key, outcome.reason, redact(value))
    return outcome.reason


def validate_static(snapshot: Snapshot, checks: Iterable[HealthCheckSpec]) -> Dict[str, CheckResult]:
    """
    @brief Проверяет форму каждого значения без сетевых обращений
    @return name -> CheckResult (OK с превью, MISSING или INVALID_FORMAT с именем правила)
    """
    results: Dict[str, CheckResult] = {}
    for check in checks:
        try:
            preview = _check_value(check, snapshot.get(check.key))
        except MissingCredential as exc:
            results[check.name] = CheckResult(check.name, CheckStatus.MISSING, str(exc))
        except InvalidCredentialFormat as exc:
            results[check.name] = CheckResult(
                check.name, CheckStatus.INVALID_FORMAT, f"failed rule '{exc.rule}' [{exc.preview}]"
            )
        else:
            results[check.name] = CheckResult(check.name, CheckStatus.OK, preview)
    return results


def _consume_abandoned(task: "asyncio.Task[Any]") -> None:
    if not task.cancelled():
        task.exception()


async def _run_probe(
    session: aiohttp.ClientSession,
    check: HealthCheckSpec,
    probe: LiveProbe,
    snapshot: Snapshot,
    timeout: float,
) -> CheckResult:
    credential = snapshot.get(check.key) or ""
    started = time.perf_counter()
    task = asyncio.ensure_future(probe.execute(session, credential, snapshot))

    def _result(status: CheckStatus, evidence: str) -> CheckResult:
        elapsed = round((time.perf_counter() - started) * 1000, 2)
        return CheckResult(check.name, status, evidence, stage="probe", elapsed_ms=elapsed)

    done, _ = await asyncio.wait({task}, timeout=timeout)
    if not done:
        # висящий запрос бросаем, не дожидаясь его завершения
        task.add_done_callback(_consume_abandoned)
        task.cancel()
        log_warning(f"[diagnostics] {check.name}: таймаут пробы {timeout:g}s")
        return _result(CheckStatus.PROBE_TIMEOUT, f"Timeout after {timeout:g}s")

    try:
        evidence = task.result()
    except ProbeTimeout as exc:
        log_warning(f"[diagnostics] {check.name}: {exc}")
        return _result(CheckStatus.PROBE_TIMEOUT, str(exc))
    except ProbeFailure as exc:
        log_warning(f"[diagnostics] {check.name}: {exc}")
        return _result(CheckStatus.PROBE_FAILED, str(exc))
    except asyncio.CancelledError:
        return _result(CheckStatus.PROBE_FAILED, "Probe cancelled")
    except Exception as exc:
        log_error(f"[diagnostics] {check.name}: неожиданная ошибка пробы", exc=exc)
        return _result(CheckStatus.PROBE_FAILED, f"Unexpected error: {exc}")
    return _result(CheckStatus.OK, str(evidence))


async def probe_live(
    checks: Iterable[HealthCheckSpec],
    snapshot: Snapshot,
    timeout_per_probe: float,
    session: Optional[aiohttp.ClientSession] = None,
) -> Dict[str, CheckResult]:
    """
    @brief Параллельно запускает живые пробы всех проверок, у которых они есть
    @param timeout_per_probe Таймаут одной пробы в секундах
    @return name -> CheckResult
    """
    probed: List[Tuple[HealthCheckSpec, LiveProbe]] = [(c, c.probe) for c in checks if c.probe is not None]
    if not probed:
        return {}

    own_session = session is None
    if session is None:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout_per_probe * 2))
    try:
        results = await asyncio.gather(
            *(_run_probe(session, check, probe, snapshot, timeout_per_probe) for check, probe in probed)
        )
    finally:
        if own_session:
            await session.close()
    return {r.name: r for r in results}


async def run(
    snapshot: Snapshot,
    checks: Iterable[HealthCheckSpec],
    timeout_per_probe: float = 10.0,
    session: Optional[aiohttp.ClientSession] = None,
) -> Report:
    """
    @brief Полный прогон: статика, затем пробы только для прошедших статику
    @return Report со всеми проверками в порядке конфигурации
    """
    checks = list(checks)
    log_info(f"[diagnostics] Начинаем проверки {len(checks)} зависимостей, timeout={timeout_per_probe}s")

    static = validate_static(snapshot, checks)
    candidates = [c for c in checks if c.probe is not None and static[c.name].ok]
    live = await probe_live(candidates, snapshot, timeout_per_probe, session=session)

    report = Report(tuple(live.get(c.name, static[c.name]) for c in checks))
    if report.ok:
        log_info(f"[diagnostics] Все проверки пройдены ({len(report)})")
    else:
        log_warning(f"[diagnostics] Не пройдены: {', '.join(report.failed)}")
    return report


def run_sync(snapshot: Snapshot, checks: Iterable[HealthCheckSpec], timeout_per_probe: float = 10.0) -> Report:
    return asyncio.run(run(snapshot, checks, timeout_per_probe))


async def diagnose(config: Dict[str, Any]) -> Report:
    """Прогон по секции diagnostics конфигурации, значения берутся из окружения и .env."""
    diag_cfg = config.get("diagnostics") or {}
    checks = load_health_checks(config)
    snapshot = snapshot_from_env(snapshot_keys(checks), env_file=diag_cfg.get("env_file"))
    return await run(snapshot, checks, float(diag_cfg.get("probe_timeout_sec", 10.0)))
