import pytest
from bson import ObjectId

import addresses
from addresses import user_lock


@pytest.fixture
def add_address(client, user_auth, address_payload):
    headers, _ = user_auth

    def _add(name="Home", **overrides):
        res = client.post("/addresses", json=address_payload(name, **overrides), headers=headers)
        assert res.status_code == 201, res.text
        return res.json()
    return _add


def defaults(db, user_id):
    return [a["name"] for a in db["address"].find({"user": ObjectId(user_id), "isDefault": True})]


def test_first_address_is_forced_default(add_address, user_auth, db):
    _, user = user_auth
    first = add_address("Home", isDefault=False)
    assert first["isDefault"] is True
    assert defaults(db, user["id"]) == ["Home"]


def test_requesting_default_moves_it(add_address, user_auth, db):
    _, user = user_auth
    add_address("Home")
    second = add_address("Office")
    assert second["isDefault"] is False
    third = add_address("Farmhouse", isDefault=True)
    assert third["isDefault"] is True
    assert defaults(db, user["id"]) == ["Farmhouse"]


def test_address_ids_are_tracked_on_user(client, add_address, user_auth, db):
    headers, user = user_auth
    a1 = add_address("Home")
    a2 = add_address("Office")
    stored = db["user"].find_one({"_id": ObjectId(user["id"])})
    assert [str(i) for i in stored["addresses"]] == [a1["id"], a2["id"]]

    client.delete(f"/addresses/{a1['id']}", headers=headers)
    stored = db["user"].find_one({"_id": ObjectId(user["id"])})
    assert [str(i) for i in stored["addresses"]] == [a2["id"]]


def test_deleting_default_promotes_remaining(client, add_address, user_auth, db):
    headers, user = user_auth
    a1 = add_address("A1")
    add_address("A2")
    res = client.delete(f"/addresses/{a1['id']}", headers=headers)
    assert res.status_code == 200
    assert res.json() == {"message": "Address deleted successfully"}
    assert defaults(db, user["id"]) == ["A2"]


def test_promotion_prefers_most_recent_address(client, add_address, user_auth, db):
    headers, user = user_auth
    a1 = add_address("A1")
    add_address("A2")
    add_address("A3")
    client.delete(f"/addresses/{a1['id']}", headers=headers)
    assert defaults(db, user["id"]) == ["A3"]


def test_deleting_non_default_keeps_default(client, add_address, user_auth, db):
    headers, user = user_auth
    add_address("A1")
    a2 = add_address("A2")
    client.delete(f"/addresses/{a2['id']}", headers=headers)
    assert defaults(db, user["id"]) == ["A1"]


def test_deleting_last_address(client, add_address, user_auth, db):
    headers, user = user_auth
    a1 = add_address("A1")
    client.delete(f"/addresses/{a1['id']}", headers=headers)
    assert db["address"].count_documents({}) == 0
    assert client.get("/addresses", headers=headers).json() == []


def test_set_default_is_idempotent(client, add_address, user_auth, db):
    headers, user = user_auth
    add_address("A1")
    a2 = add_address("A2")
    for _ in range(2):
        res = client.patch(f"/addresses/{a2['id']}/default", headers=headers)
        assert res.status_code == 200
        assert res.json()["isDefault"] is True
        assert defaults(db, user["id"]) == ["A2"]


def test_update_with_default_flag(client, add_address, user_auth, db):
    headers, user = user_auth
    add_address("A1")
    a2 = add_address("A2")
    res = client.put(f"/addresses/{a2['id']}", json={"isDefault": True, "city": "Mysuru"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["city"] == "Mysuru"
    assert defaults(db, user["id"]) == ["A2"]


def test_unsetting_the_only_default_is_ignored(client, add_address, user_auth, db):
    headers, user = user_auth
    a1 = add_address("A1")
    res = client.put(f"/addresses/{a1['id']}", json={"isDefault": False}, headers=headers)
    assert res.status_code == 200
    assert res.json()["isDefault"] is True
    assert defaults(db, user["id"]) == ["A1"]


def test_invariant_holds_across_operations(client, add_address, user_auth, db):
    headers, user = user_auth
    created = [add_address(f"A{i}") for i in range(4)]
    assert len(defaults(db, user["id"])) == 1

    client.patch(f"/addresses/{created[2]['id']}/default", headers=headers)
    assert defaults(db, user["id"]) == ["A2"]

    client.put(f"/addresses/{created[1]['id']}", json={"isDefault": True}, headers=headers)
    assert defaults(db, user["id"]) == ["A1"]

    client.delete(f"/addresses/{created[1]['id']}", headers=headers)
    assert len(defaults(db, user["id"])) == 1

    add_address("A4", isDefault=True)
    assert defaults(db, user["id"]) == ["A4"]


def test_list_puts_default_first(client, add_address, user_auth):
    headers, _ = user_auth
    add_address("A1")
    add_address("A2")
    add_address("A3")
    names = [a["name"] for a in client.get("/addresses", headers=headers).json()]
    assert names == ["A1", "A3", "A2"]


def test_other_users_addresses_are_not_found(client, add_address, login, address_payload, db):
    mine = add_address("Mine")
    other_headers, other = login("bob@example.com", "Bob")
    client.post("/addresses", json=address_payload("Bob Home"), headers=other_headers)

    assert client.get(f"/addresses/{mine['id']}", headers=other_headers).status_code == 404
    assert client.put(f"/addresses/{mine['id']}", json={"city": "Pune"}, headers=other_headers).status_code == 404
    assert client.delete(f"/addresses/{mine['id']}", headers=other_headers).status_code == 404
    res = client.patch(f"/addresses/{mine['id']}/default", headers=other_headers)
    assert res.status_code == 404
    assert res.json() == {"error": "Address not found"}
    # a failed promotion leaves the caller's default untouched
    assert defaults(db, other["id"]) == ["Bob Home"]


def test_malformed_address_id(client, user_auth):
    headers, _ = user_auth
    assert client.delete("/addresses/not-an-id", headers=headers).status_code == 404


@pytest.mark.parametrize("overrides, field", [
    ({"coordinates": {"lat": 91, "lng": 0}}, "coordinates.lat"),
    ({"coordinates": {"lat": 0, "lng": -181}}, "coordinates.lng"),
    ({"street": "abc"}, "street"),
    ({"postalCode": "12"}, "postalCode"),
])
def test_address_validation(client, user_auth, address_payload, overrides, field):
    headers, _ = user_auth
    res = client.post("/addresses", json=address_payload(**overrides), headers=headers)
    assert res.status_code == 400
    assert field in [e["field"] for e in res.json()["errors"]]


def test_addresses_require_login(client, address_payload):
    assert client.get("/addresses").status_code == 401
    assert client.post("/addresses", json=address_payload()).status_code == 401


def test_user_locks_are_released(client, add_address, user_auth):
    headers, _ = user_auth
    a1 = add_address("A1")
    add_address("A2")
    client.patch(f"/addresses/{a1['id']}/default", headers=headers)
    client.delete(f"/addresses/{a1['id']}", headers=headers)
    assert addresses._locks == {}


def test_user_lock_entry_lives_while_held():
    with user_lock("u1"):
        assert "u1" in addresses._locks
    assert "u1" not in addresses._locks
