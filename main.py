#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file main.py
@brief Операторская утилита procwarden
@details Команды:
           diagnose      проверка учётных данных и доступности внешних сервисов
           supervise     диагностика, затем запуск и надзор за всеми процессами (foreground)
           status        статус процессов работающего супервизора
           start-all / stop-all / restart-all / start NAME / stop NAME
         Команды управления обращаются к HTTP API работающего supervise.
"""

import argparse
import asyncio
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from readiness import Report, diagnose
from supervision import (
    Supervisor,
    SupervisorControlServer,
    call_control,
    load_process_specs,
)
from supervision.control import ControlClientError, status_payload
from utils.config_loader import load_config
from utils.errors import ConfigurationError
from utils.file_writer import write_json_report, write_status_snapshot, write_text_report
from utils.logger import (
    log_error,
    log_info,
    setup_logger,
)

console = Console()

EXIT_OK = 0
EXIT_NOT_READY = 1
EXIT_CONFIG_ERROR = 2


def _print_report(report: Report) -> None:
    table = Table(
        title="Диагностика готовности",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Зависимость", no_wrap=True)
    table.add_column("Статус", no_wrap=True)
    table.add_column("Детали")
    table.add_column("мс", no_wrap=True, justify="right")
    for result in report:
        color = "green" if result.ok else "red"
        table.add_row(
            result.name,
            f"[{color}]{result.status.value}[/{color}]",
            result.evidence,
            "-" if result.elapsed_ms is None else f"{result.elapsed_ms:.0f}",
        )
    console.print(table)
    if report.ok:
        console.print("[bold green]✓ Все зависимости готовы[/bold green]")
    else:
        console.print(f"[bold red]✗ Не готовы: {', '.join(report.failed)}[/bold red]")


def _format_uptime(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    minutes, sec = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m{sec:02d}s" if hours else f"{minutes}m{sec:02d}s"


def _print_status(processes: List[Dict[str, Any]]) -> None:
    table = Table(title="Процессы", show_header=True, header_style="bold cyan")
    table.add_column("Имя", no_wrap=True)
    table.add_column("Состояние", no_wrap=True)
    table.add_column("PID", no_wrap=True)
    table.add_column("Рестарты", no_wrap=True)
    table.add_column("Uptime", no_wrap=True)
    table.add_column("Память", no_wrap=True)
    table.add_column("Последняя ошибка")
    for item in processes:
        state = item.get("state", "-")
        color = {"running": "green", "failed_permanently": "red", "stopped": "white"}.get(state, "yellow")
        memory = item.get("memory_bytes")
        table.add_row(
            str(item.get("name")),
            f"[{color}]{state}[/{color}]",
            str(item.get("pid") or "-"),
            f"{item.get('restarts_in_window', 0)}/{item.get('max_restarts', '-')}",
            _format_uptime(item.get("uptime_seconds")),
            "-" if memory is None else f"{memory / (1024 * 1024):.1f}MB",
            item.get("last_error") or "",
        )
    console.print(table)


def _print_results(results: List[Dict[str, Any]]) -> None:
    for item in results:
        mark = "[green]✓[/green]" if item.get("ok") else "[red]✗[/red]"
        console.print(f"{mark} {item.get('action')} {item.get('name')}: {item.get('detail')}")


def save_report(config: Dict[str, Any], report: Report) -> None:
    """
    Сохраняет JSON и текстовые отчеты диагностики
    """
    output_cfg = config.get("output", {}) or {}
    output_dir = Path(output_cfg.get("directory", "output"))
    date_str = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    data = report.to_dict()
    try:
        if output_cfg.get("json_format", True):
            json_path = output_dir / f"diagnostics_{date_str}.json"
            write_json_report(data, json_path)
            write_json_report(data, output_dir / "diagnostics_latest.json")
            console.print(f"[green]✓[/green] JSON отчет сохранен: {json_path}")
        if output_cfg.get("text_format", False):
            txt_path = output_dir / f"diagnostics_{date_str}.txt"
            write_text_report(data, txt_path)
            console.print(f"[green]✓[/green] Текстовый отчет сохранен: {txt_path}")
    except OSError as e:
        log_error("Ошибка сохранения отчетов", exc=e)
        console.print(f"[bold red]Ошибка сохранения:[/bold red] {e}")


async def run_diagnostics(config: Dict[str, Any]) -> Report:
    report = await diagnose(config)
    _print_report(report)
    save_report(config, report)
    return report


def cmd_supervise(config: Dict[str, Any], skip_diagnostics: bool) -> int:
    specs = load_process_specs(config)
    if not specs:
        console.print("[bold red]В supervisor.processes нет ни одного процесса[/bold red]")
        return EXIT_CONFIG_ERROR

    if not skip_diagnostics:
        report = asyncio.run(run_diagnostics(config))
        if not report.ok:
            console.print("[bold red]Диагностика не пройдена, супервизор не запущен[/bold red]")
            return EXIT_NOT_READY

    supervisor = Supervisor.from_config(config, specs)
    control = SupervisorControlServer.from_config(supervisor, config)
    if control:
        control.start()
        control.wait_ready()

    stop_event = threading.Event()

    def _on_signal(signum: int, frame: Any) -> None:
        log_info(f"Получен сигнал {signum}, останавливаем процессы")
        stop_event.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    output_dir = Path((config.get("output") or {}).get("directory", "output"))
    status_path = output_dir / "status_latest.json"
    interval = float((config.get("supervisor") or {}).get("status_interval_sec", 10.0))

    _print_results([r.to_dict() for r in supervisor.start_all()])
    try:
        while not stop_event.wait(interval):
            try:
                write_status_snapshot(status_payload(supervisor), status_path)
            except OSError as e:
                log_error("Не удалось записать снимок статуса", exc=e)
    finally:
        _print_results([r.to_dict() for r in supervisor.stop_all()])
        if control:
            control.stop()
    return EXIT_OK


async def cmd_remote(config: Dict[str, Any], method: str, path: str) -> int:
    control_cfg = ((config.get("supervisor") or {}).get("control") or {})
    host = control_cfg.get("host", "127.0.0.1")
    port = int(control_cfg.get("port", 8130))
    try:
        payload = await call_control(host, port, method, path)
    except ControlClientError as e:
        console.print(f"[bold red]Супервизор недоступен:[/bold red] {e}")
        return EXIT_NOT_READY

    if "processes" in payload:
        _print_status(payload["processes"])
        return EXIT_OK
    _print_results(payload.get("results", []))
    return EXIT_OK if payload.get("ok") else EXIT_NOT_READY


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procwarden",
        description="Process supervision and readiness diagnostics",
    )
    parser.add_argument("-c", "--config", default=None, help="Path to config.yaml / config.json")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("diagnose", help="Validate credentials and probe external services")
    p_sup = sub.add_parser("supervise", help="Run diagnostics, then start and supervise all processes")
    p_sup.add_argument("--skip-diagnostics", action="store_true", help="Start without the readiness gate")
    sub.add_parser("status", help="Show status of a running supervisor")
    sub.add_parser("start-all", help="Start every process")
    sub.add_parser("stop-all", help="Stop every process")
    sub.add_parser("restart-all", help="Stop, then start every process")
    p_start = sub.add_parser("start", help="Start one process")
    p_start.add_argument("name")
    p_stop = sub.add_parser("stop", help="Stop one process")
    p_stop.add_argument("name")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
        setup_logger(config.get("logging", {}))
        log_info("Конфигурация успешно загружена")

        if args.command == "diagnose":
            report = asyncio.run(run_diagnostics(config))
            return EXIT_OK if report.ok else EXIT_NOT_READY
        if args.command == "supervise":
            return cmd_supervise(config, args.skip_diagnostics)
        if args.command == "status":
            return asyncio.run(cmd_remote(config, "GET", "/status"))
        if args.command in ("start-all", "stop-all", "restart-all"):
            return asyncio.run(cmd_remote(config, "POST", f"/{args.command}"))
        return asyncio.run(cmd_remote(config, "POST", f"/processes/{args.name}/{args.command}"))
    except ConfigurationError as e:
        console.print(f"[bold red]Ошибка конфигурации:[/bold red] {e}")
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
