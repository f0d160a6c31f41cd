"""
Cloud backends, one binding per cloud.

Importing this package registers every backend with the registry the
provisioner dispatches through.
"""

from .base import ProviderBackend, backend_class, register_backend
from .aws import AWSBackend
from .azure import AzureBackend
from .gcp import GCPBackend

__all__ = [
    "ProviderBackend",
    "register_backend",
    "backend_class",
    "GCPBackend",
    "AWSBackend",
    "AzureBackend",
]
