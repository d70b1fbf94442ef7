# MIT License
# Copyright (c) 2025 Hashborn

"""
Observability Module

Provides metrics for snapshot downloads and genesis assembly.
"""

from .metrics import metrics_registry, dump_metrics

__all__ = ['metrics_registry', 'dump_metrics']
