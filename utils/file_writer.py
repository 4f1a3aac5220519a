#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file file_writer.py
@brief Модуль функций сохранения отчетов
@details Сохраняет отчёт диагностики и снимок статуса процессов в JSON
         и человекочитаемом .txt виде.
"""

import json
from pathlib import Path
from typing import Dict, Any, Union, List


PathLike = Union[str, Path]


def write_json_report(data: Dict[str, Any], file_path: PathLike) -> None:
    """
    @brief Сохраняет отчет в JSON формате
    @param data Словарь с результатами
    @param file_path Путь к JSON-файлу
    @throws OSError При ошибках записи файла
    """
    path = Path(file_path)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(
            data,
            f,
            ensure_ascii=False,
            indent=2,
        )


def write_text_report(data: Dict[str, Any], file_path: PathLike) -> None:
    """
    @brief Сохраняет человекочитаемый текстовый отчет диагностики
    @param data Report.to_dict()
    @param file_path Путь к .txt файлу
    @throws OSError При ошибках записи файла
    """
    path = Path(file_path)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)

    lines: List[str] = []
    lines.append("ОТЧЕТ ДИАГНОСТИКИ ГОТОВНОСТИ")
    lines.append("=" * 40)
    lines.append(f"Время запуска: {data.get('timestamp', '-')}")
    lines.append("")

    for item in data.get("results", []):
        mark = "OK  " if item.get("status") == "OK" else "FAIL"
        line = f"  [{mark}] {item.get('name')}: {item.get('status')}"
        if item.get("evidence"):
            line += f" [{item.get('evidence')}]"
        if item.get("elapsed_ms") is not None:
            line += f" ({item.get('elapsed_ms')} ms)"
        lines.append(line)

    lines.append("")
    if data.get("ok"):
        lines.append("Итог: все зависимости готовы")
    else:
        lines.append(f"Итог: не готовы {', '.join(data.get('failed', []))}")

    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def write_status_snapshot(data: Dict[str, Any], file_path: PathLike) -> None:
    """
    @brief Сохраняет снимок статуса процессов (status_payload) в JSON
    """
    write_json_report(data, file_path)
