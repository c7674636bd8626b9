"""Core logic layer.

Provides stable import paths for the balancing engine: the pure route
evaluator plus the directory, executor and coordinator around it.
"""

from .route_evaluator import evaluate_route

__all__ = ["evaluate_route"]
