"""Workflow execution and recovery engine for the appforge product pipeline."""

__version__ = "0.1.0"

__all__ = ["__version__"]
