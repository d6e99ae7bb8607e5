"""
Storage Module: Blob Stream Store backends.

- LocalDiskStore for development and single-host installs
- ObjectStore for S3-compatible buckets
"""

__all__ = ["blob"]
