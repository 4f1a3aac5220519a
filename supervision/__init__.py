#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file supervision/__init__.py
@brief Надзор за долгоживущими процессами с защитой от crash-loop
"""

from .spec import ProcessSpec, RestartPolicy, load_process_specs, parse_duration, parse_memory
from .state import ActionResult, ProcessState, ProcessStatus, RestartDecision
from .supervisor import Supervisor
from .control import SupervisorControlServer, call_control

__all__ = [
    "ProcessSpec",
    "RestartPolicy",
    "load_process_specs",
    "parse_duration",
    "parse_memory",
    "ActionResult",
    "ProcessState",
    "ProcessStatus",
    "RestartDecision",
    "Supervisor",
    "SupervisorControlServer",
    "call_control",
]
