#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file supervision/control.py
@brief HTTP API управления супервизором
@details Локальный JSON API поверх работающего Supervisor, чтобы CLI мог запрашивать
         статус и отдавать команды start/stop/restart из другого процесса.
           GET  /status
           POST /start-all | /stop-all | /restart-all
           POST /processes/<name>/start | /processes/<name>/stop
"""

from __future__ import annotations

import asyncio
import json
import threading
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from supervision.state import ActionResult
from supervision.supervisor import Supervisor
from utils.logger import log_error, log_info
from utils.errors import WardenError


def _utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def status_payload(supervisor: Supervisor) -> Dict[str, Any]:
    return {
        "timestamp": _utc_now_iso(),
        "processes": [item.to_dict() for item in supervisor.status()],
    }


def _results_payload(results: List[ActionResult]) -> Dict[str, Any]:
    return {
        "ok": all(r.ok for r in results),
        "results": [r.to_dict() for r in results],
    }


class SupervisorControlServer(threading.Thread):
    """
    Простой HTTP API для супервизора. Работает в отдельном daemon-потоке.
    """

    def __init__(self, supervisor: Supervisor, host: str, port: int) -> None:
        super().__init__(name="SupervisorControlServer", daemon=True)
        self.supervisor = supervisor
        self.host = host
        self.port = port
        self._server: Optional[ThreadingHTTPServer] = None
        self._ready = threading.Event()

    @classmethod
    def from_config(cls, supervisor: Supervisor, config: Dict[str, Any]) -> Optional["SupervisorControlServer"]:
        control_cfg = ((config.get("supervisor") or {}).get("control") or {})
        if not control_cfg.get("enabled", True):
            return None
        return cls(
            supervisor,
            host=control_cfg.get("host", "127.0.0.1"),
            port=int(control_cfg.get("port", 8130)),
        )

    @property
    def address(self) -> Tuple[str, int]:
        if self._server is None:
            return self.host, self.port
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def wait_ready(self, timeout: float = 5.0) -> bool:
        return self._ready.wait(timeout)

    def stop(self) -> None:
        if self._server:
            self._server.shutdown()
            self._server.server_close()

    def _route(self, method: str, path: str) -> Tuple[int, Dict[str, Any]]:
        sup = self.supervisor
        parts = [p for p in path.split("?")[0].split("/") if p]
        if method == "GET" and parts in (["status"], ["health"]):
            return 200, status_payload(sup)
        if method == "POST" and len(parts) == 1:
            action = {
                "start-all": sup.start_all,
                "stop-all": sup.stop_all,
                "restart-all": sup.restart_all,
            }.get(parts[0])
            if action is not None:
                return 200, _results_payload(action())
        if method == "POST" and len(parts) == 3 and parts[0] == "processes" and parts[2] in ("start", "stop"):
            name = parts[1]
            if name not in sup.names:
                return 404, {"ok": False, "error": f"unknown process: {name}"}
            result = sup.start(name) if parts[2] == "start" else sup.stop(name)
            return 200, _results_payload([result])
        return 404, {"ok": False, "error": f"not found: {method} {path}"}

    def run(self) -> None:
        control = self

        class RequestHandler(BaseHTTPRequestHandler):
            def _reply(self, method: str) -> None:
                try:
                    code, payload = control._route(method, self.path)
                except Exception as exc:
                    log_error(f"[control] ошибка обработки {method} {self.path}", exc=exc)
                    code, payload = 500, {"ok": False, "error": str(exc)}
                body = json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")
                self.send_response(code)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def do_GET(self) -> None:  # type: ignore[override]
                self._reply("GET")

            def do_POST(self) -> None:  # type: ignore[override]
                self._reply("POST")

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover - глушим шум
                return

        try:
            self._server = ThreadingHTTPServer((self.host, self.port), RequestHandler)
        except OSError as exc:
            log_error(f"[control] API не запустился ({self.host}:{self.port})", exc=exc)
            self._ready.set()
            return

        host, port = self.address
        log_info(f"[control] API супервизора запущен на http://{host}:{port}/status")
        self._ready.set()
        self._server.serve_forever(poll_interval=0.5)
        log_info("[control] API супервизора остановлен")


class ControlClientError(WardenError):
    """Supervisor control API is unreachable or answered with an error."""


async def call_control(
    host: str,
    port: int,
    method: str,
    path: str,
    timeout: float = 30.0,
) -> Dict[str, Any]:
    """Отправляет команду работающему супервизору и возвращает разобранный JSON."""
    url = f"http://{host}:{port}{path}"
    try:
        timeout_obj = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=timeout_obj) as session:
            async with session.request(method, url) as resp:
                payload = await resp.json(content_type=None)
                if resp.status >= 400:
                    raise ControlClientError(payload.get("error") or f"HTTP {resp.status}")
                return payload
    except aiohttp.ClientError as exc:
        raise ControlClientError(f"supervisor control API unreachable at {url}: {exc}") from exc
    except asyncio.TimeoutError as exc:
        raise ControlClientError(f"supervisor control API timed out at {url}") from exc
    except json.JSONDecodeError as exc:
        raise ControlClientError(f"invalid response from {url}: {exc}") from exc
