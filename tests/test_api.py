from datetime import datetime, timedelta, timezone

from jose import jwt

from conftest import register_and_login


def _add_book(client, headers, isbn="9780199535675", title="Ulysses", copies=2, **extra):
    payload = {"title": title, "isbn": isbn, "copies": copies, "authors": ["James Joyce"], "categories": ["Fiction"]}
    payload.update(extra)
    return client.post("/books", headers=headers, json=payload)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db"] is True
    assert response.headers["X-Content-Type-Options"] == "nosniff"


def test_get_books_empty(client):
    response = client.get("/books")
    assert response.status_code == 200
    assert response.json() == {"items": [], "total": 0, "page": 1, "page_size": 20, "total_pages": 0}


def test_register_login_and_duplicate(client):
    payload = {"name": "Reader", "email": "reader@example.com", "password": "secret123"}
    response = client.post("/auth/register", json=payload)
    assert response.status_code == 201
    assert response.json() == {"message": "User registered. Please verify your email."}

    response = client.post("/auth/register", json=payload)
    assert response.status_code == 400

    response = client.post("/auth/login", json={"email": "reader@example.com", "password": "secret123"})
    assert response.status_code == 200
    assert response.json()["token"]


def test_register_validation(client):
    response = client.post("/auth/register", json={"name": "A", "email": "not-an-email", "password": "secret123"})
    assert response.status_code == 400
    response = client.post("/auth/register", json={"name": "A", "email": "a@example.com", "password": "123"})
    assert response.status_code == 400
    response = client.post(
        "/auth/register",
        json={"name": "A", "email": "a@example.com", "password": "secret123", "role": "librarian"},
    )
    assert response.status_code == 422


def test_login_errors(client):
    response = client.post("/auth/login", json={"email": "ghost@example.com", "password": "secret123"})
    assert response.status_code == 404
    assert response.json()["detail"] == "User not found"

    register_and_login(client)
    response = client.post("/auth/login", json={"email": "member@example.com", "password": "wrong-password"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid credentials"


def test_verify_email(client):
    import api

    client.post("/auth/register", json={"name": "Reader", "email": "reader@example.com", "password": "secret123"})
    user = api.library.find_user_by_email("reader@example.com")
    assert user.verified is False

    assert client.get("/auth/verify-email").status_code == 400
    response = client.get("/auth/verify-email", params={"token": "nope"})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid or expired token"

    response = client.get("/auth/verify-email", params={"token": user.verification_token})
    assert response.status_code == 200
    assert api.library.get_user(user.id).verified is True


def test_protected_routes_need_a_valid_token(client):
    response = client.get("/borrow/limit")
    assert response.status_code == 401
    assert response.json()["detail"] == "Unauthorized"

    response = client.get("/borrow/limit", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid token"


def test_expired_token_is_rejected(client):
    import api
    import auth

    assert register_and_login(client)
    user = api.library.find_user_by_email("member@example.com")
    token = auth.create_access_token(user, expires_minutes=-1)

    response = client.get("/borrow/limit", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid token"


def test_token_signed_with_another_secret_is_rejected(client):
    import api

    assert register_and_login(client)
    user = api.library.find_user_by_email("member@example.com")
    claims = {
        "sub": str(user.id),
        "id": user.id,
        "role": "admin",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    token = jwt.encode(claims, "not-the-server-secret", algorithm="HS256")

    response = client.get("/borrow/limit", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid token"


def test_member_cannot_manage_books(client, member_headers):
    response = _add_book(client, member_headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Admin access required"


def test_admin_book_crud(client, admin_headers):
    response = _add_book(client, admin_headers)
    assert response.status_code == 201
    book = response.json()
    assert book["isbn"] == "9780199535675"
    assert book["authors"] == ["James Joyce"]

    assert _add_book(client, admin_headers).status_code == 400
    assert _add_book(client, admin_headers, isbn="9780321765723", title="Bad ISBN").status_code == 400

    response = client.put(f"/books/{book['id']}", headers=admin_headers, json={"copies": 7})
    assert response.status_code == 200
    assert response.json()["copies"] == 7
    assert client.put(f"/books/{book['id']}", headers=admin_headers, json={}).status_code == 400
    assert client.put("/books/999", headers=admin_headers, json={"copies": 1}).status_code == 404

    response = client.delete(f"/books/{book['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert client.delete(f"/books/{book['id']}", headers=admin_headers).status_code == 404
    assert client.get("/books/9780199535675").status_code == 404


def test_book_details_and_search(client, admin_headers):
    _add_book(client, admin_headers)
    _add_book(client, admin_headers, isbn="9780099590088", title="Sapiens", authors=["Yuval Noah Harari"],
              categories=["History"])

    assert client.get("/books/9780199535675").json()["title"] == "Ulysses"
    assert client.get("/books/sapiens").json()["isbn"] == "9780099590088"
    assert client.get("/books/Missing").status_code == 404

    body = client.get("/books", params={"author": "harari"}).json()
    assert body["total"] == 1
    assert body["items"][0]["title"] == "Sapiens"

    body = client.get("/books", params={"page_size": 1, "page": 2}).json()
    assert body["total"] == 2
    assert body["total_pages"] == 2
    assert [b["title"] for b in body["items"]] == ["Ulysses"]

    authors = client.get("/authors").json()
    assert {a["name"] for a in authors} == {"James Joyce", "Yuval Noah Harari"}
    categories = client.get("/categories").json()
    assert {c["name"]: c["bookCount"] for c in categories} == {"Fiction": 1, "History": 1}


def test_search_cache_is_invalidated_on_write(client, admin_headers):
    assert client.get("/books").json()["total"] == 0
    _add_book(client, admin_headers)
    assert client.get("/books").json()["total"] == 1
