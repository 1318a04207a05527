"""Compiler: turns pipeline and config documents into kernel models."""

from deployflow.compiler.config_loader import load_config
from deployflow.compiler.definition_loader import load, validate

__all__ = ["load", "load_config", "validate"]
