"""Adapters — bindings for the package manager and HTTP.

Public re-exports for convenient access.
"""

from offkit.adapters.base import PackageManager
from offkit.adapters.http import HttpClient, UrllibHttpClient
from offkit.adapters.mock import FakeHttpClient, MockPackageManager

__all__ = [
    "FakeHttpClient",
    "HttpClient",
    "MockPackageManager",
    "PackageManager",
    "UrllibHttpClient",
]
