"""Action adapters for the source, build and deploy stage kinds."""

from deployflow.stdlib.adapters.build import BuildAdapter
from deployflow.stdlib.adapters.deploy import DeployAdapter
from deployflow.stdlib.adapters.source import SourceAdapter

__all__ = ["BuildAdapter", "DeployAdapter", "SourceAdapter"]
