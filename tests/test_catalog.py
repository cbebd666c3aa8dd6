from fastapi.testclient import TestClient

import main
from conftest import auth_headers


def test_owner_manages_menu(client, owner, restaurant):
    resp = client.post(
        "/restaurants/menu",
        json={"name": "Masala Dosa", "price": 80, "dietTypes": ["vegetarian"], "prepTime": 15,
              "nutrition": {"calories": 350}},
        headers=auth_headers(owner),
    )
    assert resp.status_code == 201
    dish = resp.json()
    assert dish["restaurant_id"] == restaurant["_id"]
    assert dish["diet_types"] == ["vegetarian"]
    assert dish["nutrition"]["calories"] == 350

    updated = client.put(f"/restaurants/menu/{dish['_id']}", json={"price": 95, "isAvailable": False},
                         headers=auth_headers(owner)).json()
    assert (updated["price"], updated["is_available"], updated["name"]) == (95, False, "Masala Dosa")

    public = client.get(f"/restaurants/{restaurant['_id']}/dishes").json()
    assert [d["_id"] for d in public] == [dish["_id"]]

    assert client.delete(f"/restaurants/menu/{dish['_id']}", headers=auth_headers(owner)).status_code == 200
    assert client.get(f"/restaurants/{restaurant['_id']}/dishes").json() == []


def test_dish_price_must_stay_positive(client, owner, restaurant, make_dish):
    dish = make_dish(restaurant)
    resp = client.put(f"/restaurants/menu/{dish['_id']}", json={"price": 0}, headers=auth_headers(owner))
    assert resp.status_code == 400
    assert client.post("/restaurants/menu", json={"name": "Free lunch", "price": -1},
                       headers=auth_headers(owner)).status_code == 400


def test_owner_cannot_touch_other_menus(client, make_user, make_restaurant, restaurant, make_dish):
    dish = make_dish(restaurant)
    rival_owner = make_user(name="Rival", role="restaurant")
    make_restaurant(name="Rival Kitchen", owner=rival_owner)
    resp = client.put(f"/restaurants/menu/{dish['_id']}", json={"price": 1}, headers=auth_headers(rival_owner))
    assert resp.status_code == 404
    assert client.delete(f"/restaurants/menu/{dish['_id']}", headers=auth_headers(rival_owner)).status_code == 404


def test_customers_cannot_manage_menus(client, customer):
    resp = client.post("/restaurants/menu", json={"name": "Nope", "price": 10}, headers=auth_headers(customer))
    assert resp.status_code == 403


def test_restaurant_listing_and_profile(client, owner, restaurant):
    listed = client.get("/restaurants").json()
    assert [r["name"] for r in listed] == ["Spice Garden"]
    assert client.get(f"/restaurants/{restaurant['_id']}").json()["cuisine"] == "Indian"
    assert client.get("/restaurants/not-an-id").status_code == 404

    resp = client.put("/restaurants/profile", json={"description": "South Indian classics", "name": ""},
                      headers=auth_headers(owner))
    assert resp.json()["description"] == "South Indian classics"
    assert resp.json()["name"] == "Spice Garden"


def test_app_startup_builds_indexes(mongo):
    mongo["order"].drop_indexes()
    with TestClient(main.app):
        pass
    unique = {tuple(spec["key"]): spec.get("unique", False) for spec in mongo["order"].index_information().values()}
    assert unique[(("order_code", 1),)] is True
