"""Winery and wine catalog.

The catalog is static reference data owned by another system. The order
core never depends on it; it is served to the guest form (wine list) and
the host dashboard (winery names). ``StaticCatalog`` ships the default
winery so a single-tenant installation needs no catalog service.
"""

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence


@dataclass(frozen=True)
class Winery:
    id: int
    name: str
    slug: str


@dataclass(frozen=True)
class Wine:
    id: int
    winery_id: int
    name: str
    category: str
    description: str = ""


class CatalogPort(Protocol):
    """Read-only catalog lookups."""

    def list_wineries(self) -> List[Winery]:
        raise NotImplementedError()

    def list_wines(self, winery_id: int) -> Optional[List[Wine]]:
        """Wines of a winery, ``None`` when the winery is unknown."""
        raise NotImplementedError()


DEFAULT_WINERY = Winery(id=1, name="Vignoble le Chat Botté", slug="vignoble-le-chat-botte")

DEFAULT_WINES = (
    Wine(1, 1, "Ze Flying Pig - Cidre", "Cidre", "Cidre brut mousseux issu de nos pommes McIntosh"),
    Wine(2, 1, "Petnat Chardonnay - Bulles", "Sparkling", "Pétillant naturel 100% Chardonnay, certifié biologique"),
    Wine(3, 1, "Blanc - Bio", "White", "Vin à la robe claire de reflets jaunâtres présentant un nez frais et minéral"),
    Wine(4, 1, "Gris de Gris", "Rosé", "Rosé présentant des notes typiques de pamplemousse et de zeste d'agrumes"),
    Wine(5, 1, "Rosé Plamplemousse", "Rosé", "Robe de couleur pêche, nez présentant des arômes frais de pamplemousse rose"),
    Wine(6, 1, "Premier Pas - Bio", "Red", "Vin rouge fermenté en grappes entières"),
    Wine(7, 1, "Hélium", "Red", "Chaleureux, équilibré, aromatique et souple"),
    Wine(8, 1, "Rouge Bourbon", "Red", "Premier vin rouge élevé en fûts de Bourbon au Québec"),
    Wine(9, 1, "Rouge Cognac", "Red", "Premier vin rouge élevé en fûts de Cognac au Québec"),
    Wine(10, 1, "Le Chat Noir", "Fortified", "Premier vin de paille fortifié au Québec"),
)


class StaticCatalog(CatalogPort):
    """In-process catalog built from fixed data."""

    def __init__(self, wineries: Sequence[Winery] = (DEFAULT_WINERY,), wines: Sequence[Wine] = DEFAULT_WINES):
        self._wineries = list(wineries)
        self._wines = list(wines)

    def list_wineries(self) -> List[Winery]:
        return sorted(self._wineries, key=lambda w: w.name)

    def list_wines(self, winery_id: int) -> Optional[List[Wine]]:
        if not any(w.id == winery_id for w in self._wineries):
            return None
        return sorted((w for w in self._wines if w.winery_id == winery_id), key=lambda w: (w.category, w.name))
