#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file readiness/validators.py
@brief Статическая проверка формы учётных данных
@details Правила задаются данными конфигурации, а не кодом конкретной проверки:
           non_empty         значение не пустое
           prefix=<literal>  начинается с литерала (например prefix=sk-or-)
           min_length=<n>    длина >= n
           longer_than=<n>   длина > n
           url               http(s) URL с хостом
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, NamedTuple, Tuple
from urllib.parse import urlparse

from utils.errors import ConfigurationError

PREVIEW_CHARS = 8
SHORT_PREVIEW_CHARS = 2


def redact(value: str) -> str:
    """Fixed-length prefix only, never the full secret."""
    if not value:
        return "(empty)"
    if len(value) > PREVIEW_CHARS:
        shown = PREVIEW_CHARS
    else:
        shown = min(SHORT_PREVIEW_CHARS, len(value) // 2)
    return f"{value[:shown]}..."


class ValidationOutcome(NamedTuple):
    ok: bool
    reason: str


@dataclass(frozen=True)
class Rule:
    name: str
    predicate: Callable[[str], bool]

    def __call__(self, value: str) -> bool:
        return self.predicate(value)


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _int_arg(rule: str, arg: str) -> int:
    try:
        number = int(arg)
    except ValueError:
        raise ConfigurationError(f"rule '{rule}' needs an integer argument")
    if number < 0:
        raise ConfigurationError(f"rule '{rule}' needs a non-negative argument")
    return number


def parse_rule(raw: Any) -> Rule:
    """
    Разбирает правило из строки ("prefix=sk-") или словаря ({"prefix": "sk-"}).
    """
    if isinstance(raw, dict):
        if len(raw) != 1:
            raise ConfigurationError(f"rule mapping must have exactly one key: {raw!r}")
        (kind, arg), = raw.items()
        kind, arg = str(kind), None if arg is None else str(arg)
    elif isinstance(raw, str):
        kind, sep, arg = raw.partition("=")
        arg = arg if sep else None
    else:
        raise ConfigurationError(f"unsupported rule: {raw!r}")

    kind = kind.strip().lower().replace("-", "_")
    text = raw if isinstance(raw, str) else f"{kind}={arg}"

    if kind == "non_empty":
        return Rule("non_empty", lambda v: bool(v))
    if kind == "url":
        return Rule("url", _is_url)
    if arg is None or arg == "":
        raise ConfigurationError(f"rule '{text}' needs an argument")
    if kind == "prefix":
        return Rule(f"prefix={arg}", lambda v, p=arg: v.startswith(p))
    if kind == "min_length":
        n = _int_arg(text, arg)
        return Rule(f"min_length={n}", lambda v, n=n: len(v) >= n)
    if kind == "longer_than":
        n = _int_arg(text, arg)
        return Rule(f"longer_than={n}", lambda v, n=n: len(v) > n)
    raise ConfigurationError(f"unknown rule: {text}")


class CredentialValidator:
    """
    Pure function from a credential value to (ok, reason). All rules must pass.
    """

    def __init__(self, rules: Iterable[Rule]) -> None:
        self.rules: Tuple[Rule, ...] = tuple(rules)
        if not self.rules:
            raise ConfigurationError("validator needs at least one rule")

    @classmethod
    def from_config(cls, raw: Any) -> "CredentialValidator":
        if raw is None:
            raise ConfigurationError("validator needs at least one rule")
        if isinstance(raw, (str, dict)):
            raw = [raw]
        return cls(parse_rule(item) for item in raw)

    def __call__(self, value: str) -> ValidationOutcome:
        for rule in self.rules:
            if not rule(value):
                return ValidationOutcome(False, rule.name)
        return ValidationOutcome(True, redact(value))

    def __repr__(self) -> str:
        return f"CredentialValidator({', '.join(r.name for r in self.rules)})"
