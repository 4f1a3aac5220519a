#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file config_loader.py
@brief Модуль загрузки конфигурации
@details Загружает конфигурацию из YAML, JSON или переменных окружения
         и накладывает её поверх значений по умолчанию.
"""

import os
import json
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from utils.errors import ConfigurationError


def load_yaml_config(file_path: str) -> Dict[str, Any]:
    """
    @brief Загружает конфигурацию из YAML файла
    @param file_path Путь к YAML файлу
    @return Словарь с конфигурацией
    @throws FileNotFoundError Если файл не найден
    @throws yaml.YAMLError При ошибках парсинга YAML
    """
    with open(file_path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f)
    return config if config else {}


def load_json_config(file_path: str) -> Dict[str, Any]:
    """
    @brief Загружает конфигурацию из JSON файла
    @param file_path Путь к JSON файлу
    @return Словарь с конфигурацией
    @throws FileNotFoundError Если файл не найден
    @throws json.JSONDecodeError При ошибках парсинга JSON
    """
    with open(file_path, 'r', encoding='utf-8') as f:
        config = json.load(f)
    return config if config else {}


def load_env_config() -> Dict[str, Any]:
    """
    @brief Загружает переопределения из переменных окружения
    @return Словарь с конфигурацией из переменных окружения
    """
    config: Dict[str, Any] = {}

    if os.getenv('PROCWARDEN_OUTPUT_DIR'):
        config['output'] = {'directory': os.getenv('PROCWARDEN_OUTPUT_DIR')}

    if os.getenv('PROCWARDEN_LOG_LEVEL'):
        config['logging'] = {'level': os.getenv('PROCWARDEN_LOG_LEVEL')}

    if os.getenv('PROCWARDEN_CONTROL_PORT'):
        try:
            port = int(os.getenv('PROCWARDEN_CONTROL_PORT', ''))
        except ValueError:
            raise ConfigurationError(
                f"PROCWARDEN_CONTROL_PORT must be an integer, got {os.getenv('PROCWARDEN_CONTROL_PORT')!r}"
            )
        config['supervisor'] = {'control': {'port': port}}

    return config


def merge_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    @brief Рекурсивно объединяет две конфигурации
    @param base Базовая конфигурация
    @param override Конфигурация для переопределения
    @return Объединенная конфигурация
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def get_default_config() -> Dict[str, Any]:
    """
    @brief Возвращает конфигурацию по умолчанию
    @return Словарь с конфигурацией по умолчанию
    """
    return {
        'logging': {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'file': 'procwarden.log',
        },
        'output': {
            'directory': 'output',
            'json_format': True,
            'text_format': False,
        },
        'supervisor': {
            'poll_interval_sec': 1.0,
            'grace_period_sec': 5.0,
            'log_directory': 'output/processes',
            'control': {
                'enabled': True,
                'host': '127.0.0.1',
                'port': 8130,
            },
            'defaults': {
                'max_restarts': 10,
                'min_uptime': '10s',
                'restart_delay': 5000,
                'restart_window': '5m',
            },
            'processes': [],
        },
        'diagnostics': {
            'env_file': '.env',
            'probe_timeout_sec': 10.0,
            'checks': [],
        },
    }


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    @brief Загружает полную конфигурацию из различных источников
    @param config_path Путь к файлу конфигурации (опционально)
    @return Словарь с полной конфигурацией
    @throws ConfigurationError Если файл указан явно и не найден или не парсится
    """
    config = get_default_config()
    explicit = config_path is not None

    if config_path is None:
        if Path('config.yaml').exists():
            config_path = 'config.yaml'
        elif Path('config.yml').exists():
            config_path = 'config.yml'
        elif Path('config.json').exists():
            config_path = 'config.json'
        else:
            config_path = os.getenv('PROCWARDEN_CONFIG_PATH')

    if explicit and not Path(config_path).exists():
        raise ConfigurationError(f"Config file not found: {config_path}")

    if config_path and Path(config_path).exists():
        file_ext = Path(config_path).suffix.lower()

        try:
            if file_ext in ['.yaml', '.yml']:
                file_config = load_yaml_config(config_path)
            elif file_ext == '.json':
                file_config = load_json_config(config_path)
            else:
                raise ConfigurationError(f"Unsupported config format: {file_ext}")
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Error loading config from {config_path}: {e}") from e

        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Config root in {config_path} must be a mapping")
        config = merge_configs(config, file_config)

    env_config = load_env_config()
    if env_config:
        config = merge_configs(config, env_config)

    return config
