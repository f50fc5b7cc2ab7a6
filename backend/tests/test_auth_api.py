def signup(client, email="carol@example.com", password="correct-horse", **extra):
    payload = {"email": email, "password": password}
    payload.update(extra)
    return client.post("/auth/signup", json=payload)


def test_signup_sets_session_cookie(client):
    response = signup(client, first_name="Carol", last_name="Danvers")
    assert response.status_code == 201
    assert response.json()["first_name"] == "Carol"
    assert "access_token" in response.cookies

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == "carol@example.com"


def test_duplicate_email_is_rejected(client):
    assert signup(client).status_code == 201
    assert signup(client, email="Carol@Example.com").status_code == 400


def test_short_password_is_rejected(client):
    assert signup(client, password="short").status_code == 422


def test_login_and_logout(client):
    signup(client)
    client.cookies.clear()

    bad = client.post("/auth/login", json={"email": "carol@example.com", "password": "wrong-password"})
    assert bad.status_code == 401

    good = client.post("/auth/login", json={"email": "carol@example.com", "password": "correct-horse"})
    assert good.status_code == 200
    assert client.get("/auth/check").json()["authenticated"] is True

    client.post("/auth/logout")
    client.cookies.clear()
    assert client.get("/auth/check").json() == {"authenticated": False}
    assert client.get("/auth/me").status_code == 401


def test_bearer_token_is_accepted(client, auth_headers):
    response = client.get("/auth/me", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["email"] == "alice@example.com"


def test_invalid_token_is_rejected(client):
    response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
