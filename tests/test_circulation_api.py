from datetime import datetime, timedelta, timezone

from conftest import register_and_login
from database import get_db_connection
from models import to_iso


def _add_book(client, admin_headers, isbn="9780199535675", title="Ulysses", copies=1):
    response = client.post("/books", headers=admin_headers, json={"title": title, "isbn": isbn, "copies": copies})
    assert response.status_code == 201, response.text
    return response.json()


def _backdate_loan(loan_id, days_overdue):
    """Move a loan's due date into the past."""
    due = datetime.now(timezone.utc) - timedelta(days=days_overdue, hours=1)
    conn = get_db_connection()
    conn.execute(
        "UPDATE borrowed_books SET due_date = ?, borrowed_at = ? WHERE id = ?",
        (to_iso(due), to_iso(due - timedelta(days=14)), loan_id),
    )
    conn.commit()
    conn.close()


def _member_id():
    import api
    return api.library.find_user_by_email("member@example.com").id


def test_borrow_and_return(client, admin_headers, member_headers):
    book = _add_book(client, admin_headers)

    response = client.post("/borrow", headers=member_headers, json={"bookId": book["id"]})
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Book borrowed successfully."
    assert body["borrowedBook"]["bookId"] == book["id"]
    assert client.get("/books/9780199535675").json()["copies"] == 0

    response = client.post("/borrow", headers=admin_headers, json={"bookId": book["id"]})
    assert response.status_code == 404
    assert response.json()["detail"] == "Book not available."

    assert client.get("/borrow/limit", headers=member_headers).json() == {
        "borrowingLimit": 3, "borrowedCount": 1, "remaining": 2,
    }

    response = client.post("/borrow/return", headers=member_headers, json={"bookId": book["id"]})
    assert response.status_code == 200
    assert response.json() == {"message": "Book returned successfully.", "fine": 0}

    response = client.post("/borrow/return", headers=member_headers, json={"bookId": book["id"]})
    assert response.status_code == 404
    assert response.json()["detail"] == "Borrowing record not found."


def test_borrowing_limit_over_http(client, admin_headers, member_headers):
    isbns = ["9780199535675", "9780099590088", "9780306406157", "9780134686097"]
    books = [_add_book(client, admin_headers, isbn=isbn, title=f"Book {i}") for i, isbn in enumerate(isbns)]
    for book in books[:3]:
        assert client.post("/borrow", headers=member_headers, json={"bookId": book["id"]}).status_code == 200

    response = client.post("/borrow", headers=member_headers, json={"bookId": books[3]["id"]})
    assert response.status_code == 400
    assert response.json()["detail"] == "Borrowing limit reached. Return a book to borrow another."


def test_fines_and_payment(client, admin_headers, member_headers):
    book = _add_book(client, admin_headers)
    loan = client.post("/borrow", headers=member_headers, json={"bookId": book["id"]}).json()["borrowedBook"]
    _backdate_loan(loan["id"], 3)

    response = client.get(f"/fine/calculate/{loan['id']}", headers=member_headers)
    assert response.status_code == 200
    assert response.json() == {"overdueDays": 3, "fine": 3}
    assert client.get("/fine/total", headers=member_headers).json() == {"totalFine": 3}
    assert client.get("/fine/calculate/999", headers=member_headers).status_code == 404

    tracked = client.get(f"/users/{_member_id()}/borrowed-books", headers=member_headers)
    assert tracked.status_code == 200
    assert tracked.json()["totalFine"] == 3
    assert tracked.json()["borrowedBooks"][0]["book"]["title"] == "Ulysses"

    response = client.post("/payment/pay", headers=member_headers, json={"borrowedBookId": loan["id"], "amount": 3})
    assert response.status_code == 400
    assert response.json()["detail"] == "No fines to pay for this record."

    response = client.post("/borrow/return", headers=member_headers, json={"bookId": book["id"]})
    assert response.json()["fine"] == 3

    response = client.get(f"/fine/calculate/{loan['id']}", headers=member_headers)
    assert response.json() == {"fine": 0, "message": "Book has already been returned."}

    response = client.post("/payment/pay", headers=member_headers, json={"borrowedBookId": loan["id"], "amount": 2})
    assert response.status_code == 400
    assert response.json()["detail"] == "Insufficient payment. Fine is 3."

    response = client.post("/payment/pay", headers=member_headers, json={"borrowedBookId": loan["id"], "amount": 3})
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Fine paid successfully."
    transaction_id = body["transaction"]["id"]

    response = client.get(f"/payment/invoice/{transaction_id}", headers=member_headers)
    assert response.status_code == 200
    invoice = response.json()
    assert invoice["amount"] == 3
    assert invoice["book"] == {"title": "Ulysses", "isbn": "9780199535675"}
    assert invoice["user"]["email"] == "member@example.com"

    assert client.get(f"/payment/invoice/{transaction_id}", headers=admin_headers).status_code == 200
    assert client.get("/payment/invoice/999", headers=member_headers).status_code == 404


def test_other_members_cannot_see_fines_or_invoices(client, admin_headers, member_headers):
    book = _add_book(client, admin_headers)
    loan = client.post("/borrow", headers=member_headers, json={"bookId": book["id"]}).json()["borrowedBook"]
    stranger = register_and_login(client, email="stranger@example.com", name="Stranger")

    response = client.get(f"/fine/calculate/{loan['id']}", headers=stranger)
    assert response.status_code == 403

    response = client.post("/payment/pay", headers=stranger, json={"borrowedBookId": loan["id"], "amount": 10})
    assert response.status_code == 404


def test_user_endpoints_are_self_only(client, admin_headers, member_headers):
    member_id = _member_id()

    response = client.get(f"/users/{member_id}", headers=member_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["email"] == "member@example.com"
    assert "password" not in body

    response = client.get(f"/users/{member_id}", headers=admin_headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied: You can only access your own data."

    response = client.get(f"/users/{member_id}/borrowed-books", headers=admin_headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Access denied: You can only access your own borrowed books."


def test_enable_disable_user(client, admin_headers, member_headers):
    member_id = _member_id()

    response = client.patch(f"/users/{member_id}/enable-disable", headers=member_headers, json={"disabled": True})
    assert response.status_code == 403

    response = client.patch(f"/users/{member_id}/enable-disable", headers=admin_headers, json={"disabled": "yes"})
    assert response.status_code == 422

    response = client.patch(f"/users/{member_id}/enable-disable", headers=admin_headers, json={"disabled": True})
    assert response.status_code == 200
    assert response.json()["message"] == "User account has been disabled"
    assert response.json()["user"]["deletedAt"] is not None

    # Existing tokens stop working and login is refused
    assert client.get("/borrow/limit", headers=member_headers).status_code == 403
    response = client.post("/auth/login", json={"email": "member@example.com", "password": "secret123"})
    assert response.status_code == 403

    response = client.patch(f"/users/{member_id}/enable-disable", headers=admin_headers, json={"disabled": False})
    assert response.json()["message"] == "User account has been enabled"
    assert client.get("/borrow/limit", headers=member_headers).status_code == 200

    assert client.patch("/users/999/enable-disable", headers=admin_headers, json={"disabled": True}).status_code == 404


def test_analytics(client, admin_headers, member_headers):
    first = _add_book(client, admin_headers, copies=3)
    second = _add_book(client, admin_headers, isbn="9780099590088", title="Sapiens")
    client.post("/borrow", headers=member_headers, json={"bookId": first["id"]})
    client.post("/borrow", headers=admin_headers, json={"bookId": first["id"]})
    client.post("/borrow", headers=member_headers, json={"bookId": second["id"]})

    assert client.get("/analytics/most-borrowed", headers=member_headers).status_code == 403

    ranking = client.get("/analytics/most-borrowed", headers=admin_headers).json()
    assert [(r["title"], r["borrowCount"]) for r in ranking] == [("Ulysses", 2), ("Sapiens", 1)]

    report = client.get("/analytics/monthly-report", headers=admin_headers).json()
    now = datetime.now(timezone.utc)
    assert (report["month"], report["year"]) == (now.month, now.year)
    assert report["totalBorrowed"] == 3
    assert report["usersInvolved"] == 2

    response = client.get("/analytics/monthly-report", headers=admin_headers, params={"month": 13, "year": 2024})
    assert response.status_code == 422


def test_payment_amount_must_be_a_finite_positive_number(client, admin_headers, member_headers):
    import api

    book = _add_book(client, admin_headers)
    loan = client.post("/borrow", headers=member_headers, json={"bookId": book["id"]}).json()["borrowedBook"]
    _backdate_loan(loan["id"], 3)
    client.post("/borrow/return", headers=member_headers, json={"bookId": book["id"]})

    for amount in ("Infinity", "-Infinity", "NaN", 0, -5):
        response = client.post(
            "/payment/pay", headers=member_headers, json={"borrowedBookId": loan["id"], "amount": amount}
        )
        assert response.status_code == 422, amount

    assert api.library.get_borrowed_book(loan["id"]).fine == 3

    response = client.post("/payment/pay", headers=member_headers, json={"borrowedBookId": loan["id"], "amount": 3})
    assert response.status_code == 200
