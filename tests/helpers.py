from stockflow.core.security import create_token

BUSINESS_ID = "biz-lagos"
OTHER_BUSINESS_ID = "biz-abuja"


def auth_headers(
    actor_id: str,
    *,
    roles: tuple[str, ...] = ("admin",),
    permissions: tuple[str, ...] = (),
    business_id: str = BUSINESS_ID,
) -> dict[str, str]:
    token = create_token(actor_id, business_id, roles=roles, permissions=permissions, username=actor_id)
    return {"Authorization": f"Bearer {token}"}


OWNER = auth_headers("owner-1", roles=("owner",))
ALICE = auth_headers("alice")
BOB = auth_headers("bob")
CAROL = auth_headers("carol")
DAVE = auth_headers("dave")


def create_location(client, name: str, code: str, headers=None) -> str:
    res = client.post("/locations", json={"name": name, "code": code}, headers=headers or OWNER)
    assert res.status_code == 201, res.text
    return res.json()["id"]


def create_product(client, name: str = "Ankara Fabric", sku: str = "ANK-6X6", headers=None) -> tuple[str, str]:
    res = client.post(
        "/products",
        json={"name": name, "variations": [{"name": "6x6", "sku": sku, "selling_price": 100.0}]},
        headers=headers or OWNER,
    )
    assert res.status_code == 201, res.text
    body = res.json()
    return body["id"], body["variations"][0]["id"]


def record_movement(client, location_id: str, variation_id: str, entry_type: str, quantity: int, headers=None):
    return client.post(
        f"/locations/{location_id}/stock-movements",
        json={"product_variation_id": variation_id, "entry_type": entry_type, "quantity": quantity},
        headers=headers or OWNER,
    )


def stock_at(client, location_id: str, variation_id: str) -> int:
    res = client.get(
        f"/locations/{location_id}/stock",
        params={"product_variation_id": variation_id},
        headers=OWNER,
    )
    assert res.status_code == 200, res.text
    items = res.json()["items"]
    return items[0]["quantity_available"] if items else 0


def seed_inventory(client, opening: int = 100) -> dict[str, str]:
    source_id = create_location(client, "Main Warehouse", "WH1")
    destination_id = create_location(client, "Ikeja Store", "IKJ")
    product_id, variation_id = create_product(client)
    res = record_movement(client, source_id, variation_id, "opening", opening)
    assert res.status_code == 201, res.text
    return {
        "source_id": source_id,
        "destination_id": destination_id,
        "product_id": product_id,
        "variation_id": variation_id,
    }


def create_transfer(client, seed: dict[str, str], quantity: int = 10, headers=None) -> dict:
    res = client.post(
        "/transfers",
        json={
            "from_location_id": seed["source_id"],
            "to_location_id": seed["destination_id"],
            "notes": "Weekly restock",
            "items": [
                {
                    "product_id": seed["product_id"],
                    "product_variation_id": seed["variation_id"],
                    "quantity": quantity,
                }
            ],
        },
        headers=headers or ALICE,
    )
    assert res.status_code == 201, res.text
    return res.json()


def post_transition(client, transfer_id: str, path: str, headers, json=None):
    return client.post(f"/transfers/{transfer_id}/{path}", json=json, headers=headers)


def advance_to_in_transit(client, seed: dict[str, str], quantity: int = 10) -> dict:
    transfer = create_transfer(client, seed, quantity=quantity)
    transfer_id = transfer["id"]
    for path, headers in (("submit", ALICE), ("check/approve", BOB), ("send", CAROL)):
        res = post_transition(client, transfer_id, path, headers)
        assert res.status_code == 200, res.text
    return res.json()


def advance_to_verifying(client, seed: dict[str, str], quantity: int = 10) -> dict:
    transfer = advance_to_in_transit(client, seed, quantity=quantity)
    transfer_id = transfer["id"]
    for path in ("arrive", "start-verification"):
        res = post_transition(client, transfer_id, path, DAVE)
        assert res.status_code == 200, res.text
    return res.json()
