def test_register_login_me(client, auth_headers):
    headers = auth_headers("carol")
    res = client.get("/api/auth/me", headers=headers)
    assert res.status_code == 200
    assert res.json()["username"] == "carol"
    assert "password" not in res.json()


def test_register_duplicate(client, auth_headers):
    auth_headers("carol")
    res = client.post(
        "/api/auth/register",
        json={"username": "Carol", "email": "other@example.com", "password": "secret123"},
    )
    assert res.status_code == 409


def test_register_short_password(client):
    res = client.post(
        "/api/auth/register",
        json={"username": "dave", "email": "dave@example.com", "password": "123"},
    )
    assert res.status_code == 400


def test_login_wrong_password(client, auth_headers):
    auth_headers("carol")
    res = client.post("/api/auth/login", json={"username": "carol", "password": "wrong-password"})
    assert res.status_code == 401


def test_bad_token_rejected(client):
    res = client.get("/api/auth/me", headers={"Authorization": "Bearer nonsense"})
    assert res.status_code == 401
