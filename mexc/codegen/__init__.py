"""Mex lowering - Evaluates expanded trees."""

from .evaluator import Evaluator, Function, Module, KERNEL

__all__ = ['Evaluator', 'Function', 'Module', 'KERNEL']
