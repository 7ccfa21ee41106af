from decimal import Decimal


def _register(client, n=1):
    r = client.post(
        "/v1/auth/register",
        json={"name": f"User {n}", "email": f"user{n}@example.com", "password": "pw"},
    )
    assert r.status_code == 201
    return r.json()["user"]


def _login_admin(client):
    r = client.post("/v1/auth/login", json={"email": "admin@credox.com", "password": "admin-pass"})
    assert r.status_code == 200
    assert r.json()["user"]["isAdmin"] is True


def _login(client, n=1):
    r = client.post("/v1/auth/login", json={"email": f"user{n}@example.com", "password": "pw"})
    assert r.status_code == 200


def test_me_requires_session(client):
    r = client.get("/v1/auth/me")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"


def test_register_and_me(client):
    user = _register(client)
    assert "passwordHash" not in user
    r = client.get("/v1/auth/me")
    assert r.status_code == 200
    assert r.json()["id"] == user["id"]
    client.post("/v1/auth/logout")
    assert client.get("/v1/auth/me").status_code == 401


def test_duplicate_registration_conflicts(client):
    _register(client)
    r = client.post(
        "/v1/auth/register",
        json={"name": "Again", "email": "USER1@example.com", "password": "x"},
    )
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "CONFLICT"


def test_bad_login(client):
    r = client.post("/v1/auth/login", json={"email": "admin@credox.com", "password": "nope"})
    assert r.status_code == 401


def test_deposit_approval_flow(client):
    user = _register(client)
    r = client.post("/v1/transactions", json={"type": "deposit", "amount": "100"})
    assert r.status_code == 201
    tx = r.json()
    assert tx["status"] == "pending"
    assert tx["userId"] == user["id"]

    mine = client.get("/v1/transactions/mine").json()
    assert [t["id"] for t in mine["pending"]] == [tx["id"]]

    assert client.post(f"/v1/transactions/{tx['id']}/approve").status_code == 403

    _login_admin(client)
    assert [t["id"] for t in client.get("/v1/transactions/pending").json()["transactions"]] == [tx["id"]]
    r = client.post(f"/v1/transactions/{tx['id']}/approve")
    assert r.status_code == 200
    assert r.json()["status"] == "completed"

    again = client.post(f"/v1/transactions/{tx['id']}/approve")
    assert again.status_code == 404
    assert again.json()["error"]["code"] == "NOT_FOUND"

    users = client.get("/v1/users").json()["users"]
    assert [u["id"] for u in users] == [user["id"]]
    assert Decimal(users[0]["cashBalance"]) == Decimal("100")
    assert client.get("/v1/transactions/pending").json()["transactions"] == []
    assert len(client.get("/v1/transactions/completed").json()["transactions"]) == 1


def test_invalid_transaction_is_rejected(client):
    _register(client)
    r = client.post("/v1/transactions", json={"type": "deposit", "amount": "-1"})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_FAILED"
    r = client.post("/v1/transactions", json={"type": "transfer", "amount": "1"})
    assert r.status_code == 422


def test_kyc_flow(client):
    _register(client)
    assert client.get("/v1/kyc/status").json() == {"status": "none"}
    r = client.post("/v1/kyc", json={"level": "2", "documents": [{"type": "Passport", "number": "P1"}]})
    assert r.status_code == 201
    request_id = r.json()["id"]
    assert client.get("/v1/kyc/status").json() == {"status": "pending"}
    assert client.post("/v1/kyc", json={"level": 1, "documents": [{"type": "ID"}]}).status_code == 409

    _login_admin(client)
    assert client.post(f"/v1/kyc/{request_id}/approve").status_code == 200
    assert client.post(f"/v1/kyc/{request_id}/reject").status_code == 404

    _login(client)
    assert client.get("/v1/kyc/status").json() == {"status": "verified", "level": 2}


def test_kyc_without_documents_fails(client):
    _register(client)
    r = client.post("/v1/kyc", json={"level": 1, "documents": []})
    assert r.status_code == 422


def test_admin_adjust_and_patch_user(client):
    user = _register(client)
    _login_admin(client)
    r = client.post("/v1/transactions/adjust", json={"user_id": user["id"], "amount": "-5"})
    assert r.status_code == 200
    assert r.json()["type"] == "withdrawal"

    r = client.patch(f"/v1/users/{user['id']}", json={"cashBalance": "25", "password": "hijack"})
    assert r.status_code == 200
    assert Decimal(r.json()["cashBalance"]) == Decimal("25")

    assert client.patch("/v1/users/user-404", json={"name": "x"}).status_code == 404

    _login(client)
    assert client.get("/v1/auth/me").status_code == 200


def test_admin_endpoints_forbidden_for_users(client):
    _register(client)
    for method, path in [
        ("get", "/v1/users"),
        ("get", "/v1/transactions/pending"),
        ("get", "/v1/kyc/pending"),
        ("get", "/v1/admin/monitor/status"),
        ("post", "/v1/admin/monitor/recover"),
    ]:
        r = getattr(client, method)(path)
        assert r.status_code == 403, path
        assert r.json()["error"]["code"] == "FORBIDDEN"


def test_monitor_status_and_forced_recovery(client):
    _register(client)
    _login_admin(client)
    status = client.get("/v1/admin/monitor/status").json()
    assert set(status) == {"isMonitoring", "lastKnownUserCount", "recoveryAttempts", "currentUserCount"}
    assert status["currentUserCount"] == 2

    r = client.post("/v1/admin/monitor/recover")
    assert r.status_code == 200
    assert r.json()["recoveryAttempts"] == 0
