#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file readiness/probes.py
@brief Живые проверки внешних зависимостей (HTTP, Bearer, JSON)
@details Проба обращается к зависимости с учётными данными и возвращает короткое
         подтверждение (например число элементов в ответе). Любая неудача
         поднимается как ProbeFailure / ProbeTimeout и превращается в CheckResult.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import aiohttp

from utils.errors import ConfigurationError, ProbeFailure, ProbeTimeout
from utils.logger import log_debug

_PLACEHOLDER_RE = re.compile(r"\{env:([A-Za-z_][A-Za-z0-9_]*)(?:\|([^}]*))?\}")

ERROR_BODY_CHARS = 200
EVIDENCE_CHARS = 60


class LiveProbe:
    """
    Base class for live readiness probes.
    """

    async def execute(
        self,
        session: aiohttp.ClientSession,
        credential: str,
        snapshot: Mapping[str, Optional[str]],
    ) -> str:
        raise NotImplementedError


def template_keys(template: str) -> List[str]:
    return [m.group(1) for m in _PLACEHOLDER_RE.finditer(template)]


def render_template(template: str, snapshot: Mapping[str, Optional[str]]) -> str:
    """
    Подставляет {env:NAME} / {env:NAME|default} из снимка конфигурации.
    """

    def _sub(match: "re.Match[str]") -> str:
        key, default = match.group(1), match.group(2)
        value = snapshot.get(key)
        if value:
            return value
        if default is not None:
            return default
        raise ProbeFailure(f"{key} is not set (needed by probe)")

    return _PLACEHOLDER_RE.sub(_sub, template)


def extract_evidence(spec: Optional[str], payload: Any, status: int) -> str:
    """
    evidence: "count:<field>" -> "N items", "field:<dotted.path>" -> значение.
    """
    if not spec:
        return f"HTTP {status}"
    kind, _, path = spec.partition(":")
    node = payload
    for part in [p for p in path.split(".") if p]:
        if isinstance(node, list) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        elif isinstance(node, dict) and part in node:
            node = node[part]
        else:
            raise ProbeFailure(f"HTTP {status}: response has no '{path}'", status=status)
    if kind == "count":
        if not isinstance(node, (list, dict)):
            raise ProbeFailure(f"HTTP {status}: '{path}' is not a collection", status=status)
        return f"{len(node)} items"
    text = node if isinstance(node, str) else json.dumps(node, ensure_ascii=False)
    return text.strip()[:EVIDENCE_CHARS]


def _optional_ms(raw: Any) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ConfigurationError(f"probe slow_ms must be a number, got {raw!r}")
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(f"probe slow_ms must be a number, got {raw!r}")


@dataclass(frozen=True)
class HttpProbe(LiveProbe):
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    json_body: Optional[Any] = None
    auth: str = "bearer"
    evidence: Optional[str] = None
    verify_ssl: bool = True
    slow_ms: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigurationError("probe needs a url")
        if self.slow_ms is not None and (isinstance(self.slow_ms, bool) or self.slow_ms < 0):
            raise ConfigurationError(f"probe slow_ms must be >= 0, got {self.slow_ms!r}")
        auth = self.auth.lower()
        if auth not in ("bearer", "none") and not auth.startswith("header:"):
            raise ConfigurationError(f"unsupported probe auth: {self.auth}")
        if self.evidence and self.evidence.partition(":")[0] not in ("count", "field"):
            raise ConfigurationError(f"unsupported probe evidence: {self.evidence}")

    @classmethod
    def from_config(cls, raw: Dict[str, Any]) -> "HttpProbe":
        if not isinstance(raw, dict):
            raise ConfigurationError(f"probe must be a mapping, got {raw!r}")
        return cls(
            url=str(raw.get("url") or ""),
            method=str(raw.get("method", "GET")).upper(),
            headers={str(k): str(v) for k, v in (raw.get("headers") or {}).items()},
            json_body=raw.get("json", raw.get("body")),
            auth=str(raw.get("auth", "bearer")),
            evidence=raw.get("evidence"),
            verify_ssl=bool(raw.get("verify_ssl", True)),
            slow_ms=_optional_ms(raw.get("slow_ms")),
        )

    def _headers(self, credential: str) -> Dict[str, str]:
        headers = dict(self.headers)
        auth = self.auth.lower()
        if auth == "bearer":
            headers.setdefault("Authorization", f"Bearer {credential}")
        elif auth.startswith("header:"):
            headers[self.auth.split(":", 1)[1]] = credential
        return headers

    async def execute(
        self,
        session: aiohttp.ClientSession,
        credential: str,
        snapshot: Mapping[str, Optional[str]],
    ) -> str:
        url = render_template(self.url, snapshot)
        started = time.perf_counter()
        try:
            async with session.request(
                self.method,
                url,
                headers=self._headers(credential),
                json=self.json_body,
                ssl=self.verify_ssl,
            ) as response:
                text = await response.text()
                log_debug(f"[probe] {self.method} {url} -> {response.status}")
                if not 200 <= response.status < 300:
                    raise ProbeFailure(
                        f"HTTP {response.status}: {text.strip()[:ERROR_BODY_CHARS]}",
                        status=response.status,
                    )
                if not self.evidence:
                    evidence = f"HTTP {response.status}"
                else:
                    try:
                        payload = json.loads(text)
                    except json.JSONDecodeError as e:
                        raise ProbeFailure(f"Invalid JSON response: {e}", status=response.status)
                    evidence = extract_evidence(self.evidence, payload, response.status)
        except asyncio.TimeoutError:
            raise ProbeTimeout(session.timeout.total or 0.0)
        except aiohttp.ClientError as e:
            raise ProbeFailure(f"Connection error: {e}")

        elapsed_ms = (time.perf_counter() - started) * 1000
        if self.slow_ms is not None and elapsed_ms > self.slow_ms:
            # зависимость доступна, но отвечает медленно
            evidence = f"{evidence}; slow: {elapsed_ms:.0f} ms"
        return evidence

