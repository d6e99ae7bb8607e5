"""
Export Module: pipeline orchestration and artifact lifecycle.

- pipeline: per-job state and the assemble/document stages
- lifecycle: artifact naming, atomic publish, download, retention
- service: MixExportService entry points
- templates: static package presets
"""

__all__ = ["pipeline", "lifecycle", "service", "templates"]
