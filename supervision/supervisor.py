#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file supervision/supervisor.py
@brief Супервизор фиксированного набора именованных процессов
@details Каждый процесс обслуживает свой поток-монитор: запуск, ожидание выхода, контроль RSS.
         Решение о перезапуске принимает Supervisor.handle_failure по скользящему окну падений.
         Карта состояний защищена одной блокировкой, которая никогда не удерживается
         во время Popen / terminate / wait / sleep.
"""

from __future__ import annotations

import contextlib
import os
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, IO, Iterable, List, Optional

import psutil

from supervision.spec import ProcessSpec
from supervision.state import (
    ActionResult,
    ProcessRuntimeState,
    ProcessState,
    ProcessStatus,
    RestartDecision,
)
from utils.errors import (
    ConfigurationError,
    MemoryExceeded,
    PermanentFailure,
    ProcessCrash,
    ProcessFailure,
)
from utils.logger import log_debug, log_error, log_info, log_warning


def _build_env(extra: Dict[str, str]) -> Dict[str, str]:
    env: Dict[str, str] = dict(os.environ)
    env.update(extra)
    return env


def _terminate(proc: "subprocess.Popen[bytes]", grace_period: float) -> None:
    """SIGTERM, затем SIGKILL если процесс не уложился в grace_period."""
    if proc.poll() is not None:
        return
    try:
        proc.terminate()
        proc.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        log_warning(f"pid={proc.pid} не завершился за {grace_period}s, SIGKILL")
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        proc.wait()
    except ProcessLookupError:
        pass


class _ProcessMonitor(threading.Thread):
    """
    Поток, который держит один процесс запущенным, пока это позволяет политика перезапуска.
    """

    def __init__(self, supervisor: "Supervisor", spec: ProcessSpec, generation: int) -> None:
        super().__init__(name=f"Supervisor-{spec.name}", daemon=True)
        self.supervisor = supervisor
        self.spec = spec
        self.generation = generation
        self._stop_event = threading.Event()
        self._proc_lock = threading.Lock()
        self._proc: Optional[subprocess.Popen] = None

    # --- управление жизненным циклом ---------------------------------------

    def shutdown(self, grace_period: float) -> None:
        self._stop_event.set()
        with self._proc_lock:
            proc = self._proc
        if proc is not None:
            _terminate(proc, grace_period)
        if threading.current_thread() is not self:
            self.join(timeout=grace_period + self.supervisor.poll_interval + 5)

    def run(self) -> None:
        name = self.spec.name
        policy = self.spec.restart_policy
        while not self._stop_event.is_set():
            try:
                failure = self._run_once()
            except Exception as exc:  # pragma: no cover - защита на случай непойманных исключений
                log_error(f"[{name}] сбой монитора процесса", exc=exc)
                failure = ProcessCrash(name, None, error=f"monitor error: {exc}")

            if failure is None:
                break

            decision = self.supervisor._handle_failure(name, failure, generation=self.generation)
            if decision is not RestartDecision.RESTART:
                break

            log_info(f"[{name}] перезапуск через {policy.restart_delay:g} сек. (причина: {failure})")
            if self._stop_event.wait(policy.restart_delay):
                break

        log_debug(f"[{name}] монитор остановлен (generation={self.generation})")

    # --- внутренние методы -------------------------------------------------

    def _open_logs(self) -> tuple:
        log_dir = self.spec.log_dir
        if log_dir is None:
            return None, None
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        out = (log_dir / f"{self.spec.name}.out.log").open("ab")
        err = (log_dir / f"{self.spec.name}.err.log").open("ab")
        return out, err

    def _run_once(self) -> Optional[ProcessFailure]:
        """
        Один запуск процесса. Возвращает описание сбоя или None, если процесс
        остановлен оператором.
        """
        name = self.spec.name
        sup = self.supervisor
        cwd = str(self.spec.working_dir) if self.spec.working_dir else None

        sup._mark_starting(name, self.generation)
        stdout: Optional[IO[bytes]] = None
        stderr: Optional[IO[bytes]] = None
        try:
            stdout, stderr = self._open_logs()
            with self._proc_lock:
                if self._stop_event.is_set():
                    return None
                log_info(f"[{name}] попытка запуска: {' '.join(self.spec.command)} (cwd={cwd or os.getcwd()})")
                proc = subprocess.Popen(
                    list(self.spec.command),
                    cwd=cwd,
                    env=_build_env(dict(self.spec.env)),
                    stdout=stdout,
                    stderr=stderr,
                    stdin=subprocess.DEVNULL,
                )
                self._proc = proc
        except OSError as exc:
            log_error(f"[{name}] не удалось запустить процесс: {exc}")
            for handle in (stdout, stderr):
                if handle is not None:
                    handle.close()
            return ProcessCrash(name, None, error=f"launch failed: {exc}")

        try:
            return self._watch(proc)
        finally:
            with self._proc_lock:
                self._proc = None
            for handle in (stdout, stderr):
                if handle is not None:
                    handle.close()

    def _watch(self, proc: "subprocess.Popen[bytes]") -> Optional[ProcessFailure]:
        name = self.spec.name
        sup = self.supervisor
        ps_proc: Optional[psutil.Process] = None
        with contextlib.suppress(psutil.Error):
            ps_proc = psutil.Process(proc.pid)
        if ps_proc is not None and proc.poll() is None:
            sup._mark_running(name, self.generation, proc.pid)
            log_info(f"[{name}] процесс запущен pid={proc.pid}")

        limit = self.spec.max_memory_bytes
        while True:
            exit_code = proc.poll()
            if exit_code is not None:
                if self._stop_event.is_set():
                    return None
                log_warning(f"[{name}] процесс завершился: exit_code={exit_code}")
                return ProcessCrash(name, exit_code)

            if self._stop_event.is_set():
                # процесс гасит shutdown(), ждём его выхода
                proc.wait()
                return None

            rss = self._sample_memory(ps_proc)
            if rss is not None:
                sup._record_memory(name, self.generation, rss)
                if limit is not None and rss > limit:
                    failure = MemoryExceeded(name, rss, limit)
                    log_warning(f"[{name}] {failure}, убиваем процесс")
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    proc.wait()
                    if self._stop_event.is_set():
                        return None
                    return failure

            self._stop_event.wait(sup.poll_interval)

    def _sample_memory(self, ps_proc: Optional[psutil.Process]) -> Optional[int]:
        if ps_proc is None:
            return None
        try:
            return int(ps_proc.memory_info().rss)
        except psutil.NoSuchProcess:
            return None
        except psutil.Error as exc:
            log_debug(f"[{self.spec.name}] не удалось снять метрики памяти: {exc}")
            return None


class Supervisor:
    """
    Держит каждый процесс в состоянии running, пока позволяет бюджет падений.

    start/stop/status безопасно вызывать из любых потоков параллельно с мониторингом.
    """

    def __init__(
        self,
        specs: Iterable[ProcessSpec],
        *,
        poll_interval: float = 1.0,
        grace_period: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._specs: Dict[str, ProcessSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise ConfigurationError(f"duplicate process name: {spec.name}")
            self._specs[spec.name] = spec
        self.poll_interval = max(0.01, float(poll_interval))
        self.grace_period = max(0.0, float(grace_period))
        self._clock = clock
        self._lock = threading.RLock()
        self._states: Dict[str, ProcessRuntimeState] = {
            name: ProcessRuntimeState(name=name) for name in self._specs
        }
        self._monitors: Dict[str, _ProcessMonitor] = {}

    @classmethod
    def from_config(cls, config: Dict, specs: Iterable[ProcessSpec]) -> "Supervisor":
        sup_cfg = config.get("supervisor") or {}
        return cls(
            specs,
            poll_interval=float(sup_cfg.get("poll_interval_sec", 1.0)),
            grace_period=float(sup_cfg.get("grace_period_sec", 5.0)),
        )

    @property
    def names(self) -> List[str]:
        return list(self._specs)

    # --- операции оператора -----------------------------------------------

    def start(self, name: str) -> ActionResult:
        spec = self._specs.get(name)
        if spec is None:
            return ActionResult(name, "start", ok=False, changed=False, detail="unknown process")

        with self._lock:
            runtime = self._states[name]
            if runtime.state.is_active:
                return ActionResult(name, "start", ok=True, changed=False, detail="already running")
            if runtime.state is ProcessState.STOPPING:
                return ActionResult(name, "start", ok=False, changed=False, detail="stop in progress")
            if runtime.state is ProcessState.FAILED_PERMANENTLY:
                runtime.restart_history.clear()
                runtime.last_error = None
            runtime.state = ProcessState.STARTING
            runtime.generation += 1
            monitor = _ProcessMonitor(self, spec, runtime.generation)
            self._monitors[name] = monitor

        monitor.start()
        return ActionResult(name, "start", ok=True, changed=True, detail="started")

    def stop(self, name: str) -> ActionResult:
        if name not in self._specs:
            return ActionResult(name, "stop", ok=False, changed=False, detail="unknown process")

        with self._lock:
            runtime = self._states[name]
            if not runtime.state.is_active:
                return ActionResult(name, "stop", ok=True, changed=False, detail=f"already {runtime.state.value}")
            runtime.state = ProcessState.STOPPING
            monitor = self._monitors.get(name)

        log_info(f"[{name}] остановка по запросу оператора")
        if monitor is not None:
            monitor.shutdown(self.grace_period)

        with self._lock:
            runtime.state = ProcessState.STOPPED
            runtime.pid = None
            runtime.started_at = None
            runtime.started_at_wall = None
            runtime.memory_bytes = None
            if self._monitors.get(name) is monitor:
                self._monitors.pop(name, None)
        log_info(f"[{name}] остановлен")
        return ActionResult(name, "stop", ok=True, changed=True, detail="stopped")

    def start_all(self) -> List[ActionResult]:
        return [self.start(name) for name in self._specs]

    def stop_all(self) -> List[ActionResult]:
        if not self._specs:
            return []
        with ThreadPoolExecutor(max_workers=len(self._specs), thread_name_prefix="stop") as pool:
            return list(pool.map(self.stop, self._specs))

    def restart_all(self) -> List[ActionResult]:
        self.stop_all()
        results = []
        for result in self.start_all():
            results.append(
                ActionResult(result.name, "restart", ok=result.ok, changed=result.ok, detail=result.detail)
            )
        return results

    def status(self) -> List[ProcessStatus]:
        now = self._clock()
        snapshot: List[ProcessStatus] = []
        with self._lock:
            for name, spec in self._specs.items():
                runtime = self._states[name]
                policy = spec.restart_policy
                uptime = None
                if runtime.started_at is not None and runtime.state in (ProcessState.STARTING, ProcessState.RUNNING):
                    uptime = max(0.0, now - runtime.started_at)
                snapshot.append(
                    ProcessStatus(
                        name=name,
                        state=runtime.state,
                        pid=runtime.pid,
                        restarts_in_window=runtime.restart_history.count(now, policy.window),
                        max_restarts=policy.max_restarts,
                        uptime_seconds=uptime,
                        memory_bytes=runtime.memory_bytes,
                        last_exit_code=runtime.last_exit_code,
                        last_error=str(runtime.last_error) if runtime.last_error else None,
                    )
                )
        return snapshot

    def get_status(self, name: str) -> Optional[ProcessStatus]:
        for item in self.status():
            if item.name == name:
                return item
        return None

    def wait_for_state(self, name: str, states: Iterable[ProcessState], timeout: float = 10.0) -> bool:
        wanted = set(states)
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            current = self.get_status(name)
            if current is not None and current.state in wanted:
                return True
            time.sleep(0.02)
        return False

    def wait(self, timeout: Optional[float] = None) -> None:
        """Блокируется, пока не завершатся все потоки-мониторы."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                monitors = [m for m in self._monitors.values() if m.is_alive()]
            if not monitors:
                return
            for monitor in monitors:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                monitor.join(timeout=remaining if remaining is not None else 1.0)
            if deadline is not None and time.monotonic() >= deadline:
                return

    # --- политика перезапуска ---------------------------------------------

    def handle_failure(
        self, name: str, failure: ProcessFailure, now: Optional[float] = None
    ) -> RestartDecision:
        """
        Применяет бюджет падений к очередному сбою процесса.

        Если процесс проработал не меньше min_uptime, старые падения за пределами окна
        отбрасываются. Затем текущее падение добавляется в историю и считается число
        падений в [now - window, now]: при count <= max_restarts перезапуск разрешён,
        иначе процесс переходит в failed_permanently.
        """
        return self._handle_failure(name, failure, now=now)

    def _handle_failure(
        self,
        name: str,
        failure: ProcessFailure,
        now: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> RestartDecision:
        spec = self._specs.get(name)
        if spec is None:
            log_warning(f"[{name}] событие падения для неизвестного процесса проигнорировано")
            return RestartDecision.IGNORED
        policy = spec.restart_policy
        now = self._clock() if now is None else now

        with self._lock:
            runtime = self._states[name]
            if generation is not None and generation != runtime.generation:
                return RestartDecision.IGNORED
            if runtime.state in (ProcessState.STOPPING, ProcessState.STOPPED):
                return RestartDecision.IGNORED

            uptime = 0.0 if runtime.started_at is None else max(0.0, now - runtime.started_at)
            runtime.state = (
                ProcessState.MEMORY_EXCEEDED if isinstance(failure, MemoryExceeded) else ProcessState.CRASHED
            )
            runtime.pid = None
            runtime.last_error = failure
            if isinstance(failure, ProcessCrash):
                runtime.last_exit_code = failure.exit_code

            runtime.restart_history.record(now)
            count = runtime.restart_history.count(now, policy.window)
            runtime.restart_history.prune(now, policy.window)

            if count <= policy.max_restarts:
                runtime.state = ProcessState.RESTARTING
                decision = RestartDecision.RESTART
            else:
                runtime.state = ProcessState.FAILED_PERMANENTLY
                runtime.last_error = PermanentFailure(name, count, policy.window, cause=failure)
                decision = RestartDecision.GIVE_UP

        stable = "" if uptime >= policy.min_uptime else f", нестабилен: uptime {uptime:.1f}s < {policy.min_uptime:g}s"
        if decision is RestartDecision.RESTART:
            log_warning(f"[{name}] {failure}; падений в окне {count}/{policy.max_restarts}{stable}")
        else:
            log_error(
                f"[{name}] превышен лимит перезапусков ({count} > {policy.max_restarts} за {policy.window:g}s), "
                f"процесс остановлен до ручного запуска"
            )
        return decision

    # --- обновления состояния от мониторов ---------------------------------

    def _mark_starting(self, name: str, generation: int) -> None:
        with self._lock:
            runtime = self._states[name]
            if runtime.generation != generation or runtime.state is ProcessState.STOPPING:
                return
            runtime.state = ProcessState.STARTING
            runtime.pid = None
            runtime.memory_bytes = None
            runtime.started_at = self._clock()
            runtime.started_at_wall = time.time()

    def _mark_running(self, name: str, generation: int, pid: int) -> None:
        with self._lock:
            runtime = self._states[name]
            if runtime.generation != generation or runtime.state is not ProcessState.STARTING:
                return
            runtime.state = ProcessState.RUNNING
            runtime.pid = pid

    def _record_memory(self, name: str, generation: int, rss: int) -> None:
        with self._lock:
            runtime = self._states[name]
            if runtime.generation == generation:
                runtime.memory_bytes = rss
