#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file errors.py
@brief Иерархия ошибок procwarden
@details Конфигурационные ошибки фатальны при загрузке. Остальные классы описывают сбои
         зависимостей и процессов: они не пробрасываются наружу, а превращаются
         в CheckResult отчёта или в переходы состояний супервизора.
"""

from typing import Optional


class WardenError(Exception):
    """Base class for all procwarden errors."""


class ConfigurationError(WardenError):
    """Malformed process or health-check configuration. Refuses to start."""


# --- credentials -------------------------------------------------------------

class CredentialError(WardenError):
    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


class MissingCredential(CredentialError):
    def __init__(self, key: str) -> None:
        super().__init__(key, f"{key} is not set")


class InvalidCredentialFormat(CredentialError):
    def __init__(self, key: str, rule: str, preview: str) -> None:
        super().__init__(key, f"{key} failed rule '{rule}' [{preview}]")
        self.rule = rule
        self.preview = preview


# --- live probes -------------------------------------------------------------

class ProbeFailure(WardenError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ProbeTimeout(WardenError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f"Timeout after {timeout:g}s")
        self.timeout = timeout


# --- supervised processes ----------------------------------------------------

class ProcessFailure(WardenError):
    def __init__(self, name: str, message: str) -> None:
        super().__init__(message)
        self.name = name


class ProcessCrash(ProcessFailure):
    def __init__(self, name: str, exit_code: Optional[int], error: Optional[str] = None) -> None:
        if error:
            message = f"{name}: {error}"
        elif exit_code is not None and exit_code < 0:
            message = f"{name} killed by signal {-exit_code}"
        else:
            message = f"{name} exited with code {exit_code}"
        super().__init__(name, message)
        self.exit_code = exit_code


class MemoryExceeded(ProcessFailure):
    def __init__(self, name: str, rss_bytes: int, limit_bytes: int) -> None:
        super().__init__(
            name,
            f"{name} memory {rss_bytes / (1024 * 1024):.1f}MB > limit {limit_bytes / (1024 * 1024):.1f}MB",
        )
        self.rss_bytes = rss_bytes
        self.limit_bytes = limit_bytes


class PermanentFailure(ProcessFailure):
    def __init__(self, name: str, restarts: int, window: float, cause: Optional[ProcessFailure] = None) -> None:
        super().__init__(
            name,
            f"{name} gave up after {restarts} failures within {window:g}s"
            + (f" (last: {cause})" if cause else ""),
        )
        self.restarts = restarts
        self.window = window
        self.cause = cause
