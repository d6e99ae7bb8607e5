"""
Assembly Module: stream tracks into the package and render its sidecars.

- archive: ordered, memory-bounded streaming into a zip archive
- cuesheet: 75 fps DJ cue sheet
- manifest: metadata.json, mix-details.html, README.txt
"""

__all__ = ["archive", "cuesheet", "manifest"]
