"""Hazard data provider adapters, their resource limits and the registry."""

from seawater.app.sources.base import NormalizedValue, SourceAdapter
from seawater.app.sources.registry import build_adapters

__all__ = ["NormalizedValue", "SourceAdapter", "build_adapters"]
