"""Handlers for the built-in job types."""

from regops.handlers.replicate import ImageReplicateHandler
from regops.handlers.scan import ImageScanHandler
from regops.handlers.sign import ImageSignHandler
from regops.handlers.sync import ExternalRegistrySyncHandler

__all__ = [
    "ExternalRegistrySyncHandler",
    "ImageReplicateHandler",
    "ImageScanHandler",
    "ImageSignHandler",
]
