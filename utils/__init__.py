#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
@file utils/__init__.py
@brief Общие утилиты: логирование, конфигурация, ошибки, запись отчетов
"""
