"""SourceControl drivers."""

from deployflow.drivers.source_control.git import GitSourceControl

__all__ = ["GitSourceControl"]
