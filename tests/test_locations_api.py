from helpers import ALICE, OWNER, auth_headers, create_location, create_product, create_transfer, seed_inventory


def test_create_list_and_deactivate_locations(test_context):
    client, _ = test_context
    warehouse_id = create_location(client, "Main Warehouse", "wh1")
    store_id = create_location(client, "Ikeja Store", "IKJ")

    duplicate = client.post("/locations", json={"name": "Other", "code": "WH1"}, headers=OWNER)
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "conflict"

    listed = client.get("/locations", headers=OWNER).json()
    assert sorted(row["code"] for row in listed["items"]) == ["IKJ", "WH1"]

    res = client.patch(f"/locations/{store_id}", json={"isActive": False}, headers=OWNER)
    assert res.status_code == 200, res.text
    assert res.json()["is_active"] is False

    active = client.get("/locations", headers=OWNER).json()
    assert [row["id"] for row in active["items"]] == [warehouse_id]
    everything = client.get("/locations", params={"include_inactive": True}, headers=OWNER).json()
    assert everything["pagination"]["total"] == 2

    empty_patch = client.patch(f"/locations/{store_id}", json={}, headers=OWNER)
    assert empty_patch.status_code == 422


def test_inactive_location_cannot_take_new_transfers(test_context):
    client, _ = test_context
    seed = seed_inventory(client)
    assert client.patch(
        f"/locations/{seed['destination_id']}", json={"is_active": False}, headers=OWNER
    ).status_code == 200

    res = client.post(
        "/transfers",
        json={"from_location_id": seed["source_id"], "to_location_id": seed["destination_id"]},
        headers=ALICE,
    )
    assert res.status_code == 400
    assert res.json()["error"]["details"] == [{"location_id": seed["destination_id"]}]


def test_access_scopes_grant_and_revoke(test_context):
    client, _ = test_context
    seed = seed_inventory(client)
    manager = auth_headers("mia", roles=("manager",))

    blocked = client.get(f"/locations/{seed['source_id']}/stock", headers=manager)
    assert blocked.status_code == 403
    assert blocked.json()["error"]["code"] == "location_access_denied"

    grant = client.put(
        f"/locations/{seed['source_id']}/access/mia",
        json={"can_manage_inventory": True},
        headers=OWNER,
    )
    assert grant.status_code == 200, grant.text
    assert grant.json()["can_manage_inventory"] is True

    scopes = client.get(f"/locations/{seed['source_id']}/access", headers=OWNER).json()["items"]
    assert [scope["actor_id"] for scope in scopes] == ["mia"]

    stock = client.get(f"/locations/{seed['source_id']}/stock", headers=manager)
    assert stock.status_code == 200, stock.text
    assert stock.json()["items"][0]["quantity_available"] == 100

    transfer = create_transfer(client, seed, headers=manager)
    assert transfer["created_by"] == "mia"

    revoke = client.delete(f"/locations/{seed['source_id']}/access/mia", headers=OWNER)
    assert revoke.status_code == 204
    assert client.get(f"/locations/{seed['source_id']}/stock", headers=manager).status_code == 403

    missing = client.delete(f"/locations/{seed['source_id']}/access/mia", headers=OWNER)
    assert missing.status_code == 404


def test_products_are_scoped_to_business(test_context):
    client, _ = test_context
    create_product(client, name="Ankara Fabric", sku="ANK-1")

    clash = client.post(
        "/products",
        json={"name": "Ankara Copy", "variations": [{"sku": "ank-1"}]},
        headers=OWNER,
    )
    assert clash.status_code == 409

    default_variation = client.post("/products", json={"name": "Lace"}, headers=OWNER)
    assert default_variation.status_code == 201, default_variation.text
    assert [v["name"] for v in default_variation.json()["variations"]] == ["Default"]

    listed = client.get("/products", headers=OWNER).json()
    assert listed["pagination"]["total"] == 2

    outsider = auth_headers("zed", roles=("owner",), business_id="biz-abuja")
    assert client.get("/products", headers=outsider).json()["pagination"]["total"] == 0


def test_error_envelope_carries_request_id(test_context):
    client, _ = test_context
    res = client.get("/locations/missing/stock", headers={**OWNER, "X-Request-ID": "req-123"})
    assert res.status_code == 404
    assert res.headers["X-Request-ID"] == "req-123"
    error = res.json()["error"]
    assert error["request_id"] == "req-123"
    assert error["path"] == "/locations/missing/stock"


def test_health_endpoints(test_context):
    client, _ = test_context
    assert client.get("/health").json() == {"ok": True}
    assert client.get("/").json()["docs"] == "/docs"
