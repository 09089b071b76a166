"""Catalog provider.

Returns the ``httpx`` catalog client when ``USE_HTTP_CATALOG`` is set and
the in-process static catalog otherwise.
"""

from django.conf import settings

from .catalog import CatalogPort, StaticCatalog


def get_catalog() -> CatalogPort:
    if getattr(settings, "USE_HTTP_CATALOG", False):
        from .http_adapters import HttpCatalogClient

        return HttpCatalogClient()
    return StaticCatalog()
