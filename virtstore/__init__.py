"""Helpers for libvirt storage volumes, source images, connection URIs and XML definitions."""

__version__ = "0.1.0"

__all__ = ["domain_def", "image", "net", "ssh", "uri", "utils", "volume_def", "xslt"]