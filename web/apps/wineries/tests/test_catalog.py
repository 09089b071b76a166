"""Catalog reads and the per-winery order board."""

import pytest

from apps.wineries.catalog import DEFAULT_WINERY, StaticCatalog, Wine, Winery


def test_static_catalog_defaults():
    catalog = StaticCatalog()
    assert catalog.list_wineries() == [DEFAULT_WINERY]
    wines = catalog.list_wines(1)
    assert len(wines) == 10
    assert [w.category for w in wines] == sorted(w.category for w in wines)
    assert catalog.list_wines(99) is None


def test_static_catalog_known_winery_without_wines():
    catalog = StaticCatalog(wineries=[Winery(2, "Domaine du Ridge", "domaine-du-ridge")],
                            wines=[Wine(1, 1, "Hélium", "Red")])
    assert catalog.list_wines(2) == []


@pytest.mark.django_db
def test_wineries_endpoint(client):
    r = client.get("/api/wineries/")
    assert r.status_code == 200
    assert r.json() == [{"id": 1, "name": "Vignoble le Chat Botté", "slug": "vignoble-le-chat-botte"}]


@pytest.mark.django_db
def test_wines_endpoint(client):
    r = client.get("/api/wineries/1/wines/")
    assert r.status_code == 200
    names = [w["name"] for w in r.json()]
    assert "Le Chat Noir" in names
    assert client.get("/api/wineries/42/wines/").status_code == 404


@pytest.mark.django_db
def test_groups_board_lists_active_orders_of_winery(client):
    def create(name, winery_id):
        body = {"groupName": name, "wineryId": winery_id, "guestNames": {"g1": "Alice", "g2": ""},
                "selections": {"g1": [{"wine": "Hélium"}]}}
        return client.post("/api/orders/", data=body, content_type="application/json").json()

    first = create("Table 1", 1)
    create("Table 2", 2)
    done = create("Table 3", 1)
    client.put(f"/api/orders/{done['id']}/status/", data={"status": "completed"}, content_type="application/json")

    r = client.get("/api/wineries/1/groups/")
    assert r.status_code == 200
    board = r.json()
    assert [o["id"] for o in board] == [first["id"]]
    assert board[0]["summary"] == {"guestCount": 1, "wineCount": 1, "hasAnyResponse": False}
