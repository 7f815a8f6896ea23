from conftest import login


def register(client, email="ada@example.com", password="secret123"):
    resp = client.post("/api/auth/register", json={"name": "Ada Reader", "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()


def stock_copy(client, staff):
    book = client.post("/api/books", json={"title": "Dune", "author": "Frank Herbert"}, headers=staff)
    assert book.status_code == 201, book.text
    copy = client.post("/api/book-copies", json={"book_id": book.json()["id"], "barcode": "BC-1"}, headers=staff)
    assert copy.status_code == 201, copy.text
    return copy.json()


def test_health_is_public(client):
    assert client.get("/").json()["status"] == "ok"


def test_protected_route_without_token(client):
    resp = client.get("/api/books")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"
    body = resp.json()
    assert body["status"] == 401
    assert body["path"] == "/api/books"
    assert set(body) >= {"status", "error", "message", "path"}


def test_garbage_token_rejected(client):
    resp = client.get("/api/books", headers={"Authorization": "Bearer nonsense"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid Token"


def test_login_with_wrong_password(client):
    register(client)
    resp = client.post("/api/auth/user/login", json={"email": "ada@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid email or password"


def test_verify_and_me(client):
    patron = register(client)
    headers = login(client, "ada@example.com", "secret123")
    verified = client.get("/api/auth/verify", headers=headers).json()
    assert verified["role"] == "USER"
    assert client.get("/api/me", headers=headers).json()["id"] == patron["id"]


def test_staff_token_carries_role(client):
    headers = login(client, "admin@example.com", "adminpass", kind="staff")
    assert client.get("/api/auth/verify", headers=headers).json()["role"] == "ADMIN"


def test_validation_error_shape(client):
    resp = client.post("/api/auth/register", json={"name": "Ada", "email": "not-an-email", "password": "x"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation Failed"
    assert {d["field"] for d in body["details"]} >= {"email", "password"}


def test_duplicate_registration_conflicts(client):
    register(client)
    resp = client.post("/api/auth/register", json={"name": "Ada", "email": "ada@example.com", "password": "secret123"})
    assert resp.status_code == 409


def test_patron_cannot_manage_catalog(client):
    register(client)
    headers = login(client, "ada@example.com", "secret123")
    resp = client.post("/api/books", json={"title": "Dune", "author": "Frank Herbert"}, headers=headers)
    assert resp.status_code == 403


def test_lending_and_fine_flow(client):
    patron = register(client)
    user = login(client, "ada@example.com", "secret123")
    staff = login(client, "desk@example.com", "deskpass", kind="staff")
    copy = stock_copy(client, staff)

    loan = client.post("/api/loans", headers=user, json={
        "account_id": patron["id"], "copy_id": copy["id"], "borrow_date": "2023-12-18",
    })
    assert loan.status_code == 201, loan.text
    loan = loan.json()
    assert loan["due_date"] == "2024-01-01"

    again = client.post("/api/loans", headers=staff, json={"account_id": patron["id"], "copy_id": copy["id"]})
    assert again.status_code == 409

    returned = client.post(f"/api/loans/{loan['id']}/return", headers=user, json={"return_date": "2024-01-06"})
    assert returned.json()["status"] == "RETURNED"
    returned_twice = client.post(f"/api/loans/{loan['id']}/return", headers=user, json={"return_date": "2024-01-07"})
    assert returned_twice.status_code == 409

    fine = client.post(f"/api/fines/assess/loan/{loan['id']}", params={"dailyRate": 1.0}, headers=staff)
    assert fine.status_code == 201, fine.text
    fine = fine.json()
    assert fine["amount"] == 5.0

    pending = client.get(f"/api/fines/user/{patron['id']}/total-pending", headers=user).json()
    assert pending == {"userId": patron["id"], "totalPending": 5.0}

    assert client.post(f"/api/fines/{fine['id']}/pay", headers=user).status_code == 403
    paid = client.post(f"/api/fines/{fine['id']}/pay", headers=staff)
    assert paid.status_code == 200
    assert paid.json()["status"] == "PAID"
    assert client.post(f"/api/fines/{fine['id']}/waive", headers=staff).status_code == 409


def test_payment_flow(client):
    patron = register(client)
    user = login(client, "ada@example.com", "secret123")
    staff = login(client, "desk@example.com", "deskpass", kind="staff")
    copy = stock_copy(client, staff)
    loan = client.post("/api/loans", headers=staff, json={
        "account_id": patron["id"], "copy_id": copy["id"], "borrow_date": "2023-12-18",
    }).json()
    client.post(f"/api/loans/{loan['id']}/return", headers=staff, json={"return_date": "2024-01-06"})
    fine = client.post(f"/api/fines/assess/loan/{loan['id']}", params={"dailyRate": 2.0}, headers=staff).json()

    payment = client.post("/api/payments", headers=user, json={
        "fine_id": fine["id"], "amount": 10.0, "payment_method": "CREDIT_CARD",
    })
    assert payment.status_code == 201, payment.text
    payment = payment.json()
    assert payment["status"] == "PENDING"

    assert client.post(f"/api/payments/{payment['id']}/complete", headers=user).status_code == 403
    completed = client.post(f"/api/payments/{payment['id']}/complete", headers=staff, json={"transaction_id": "TX-1"})
    assert completed.json()["status"] == "COMPLETED"

    total = client.get(f"/api/payments/fine/{fine['id']}/total-paid", headers=user).json()
    assert total["totalPaid"] == 10.0
    assert client.get(f"/api/fines/{fine['id']}", headers=user).json()["status"] == "PENDING"

    exists = client.get("/api/payments/exists/transaction/TX-1", headers=staff).json()
    assert exists == {"exists": True}

    refunded = client.post(f"/api/payments/{payment['id']}/refund", headers=staff)
    assert refunded.json()["status"] == "REFUNDED"
    assert client.post(f"/api/payments/{payment['id']}/refund", headers=staff).status_code == 409


def test_patron_cannot_borrow_for_someone_else(client):
    register(client)
    other = register(client, email="bob@example.com")
    user = login(client, "ada@example.com", "secret123")
    staff = login(client, "desk@example.com", "deskpass", kind="staff")
    copy = stock_copy(client, staff)

    resp = client.post("/api/loans", headers=user, json={"account_id": other["id"], "copy_id": copy["id"]})
    assert resp.status_code == 403
    assert resp.json()["message"] == "User mismatch"
    assert client.get(f"/api/fines/user/{other['id']}/pending", headers=user).status_code == 403


def test_patron_loan_listing_is_scoped_to_self(client):
    register(client)
    other = register(client, email="bob@example.com")
    user = login(client, "ada@example.com", "secret123")
    staff = login(client, "desk@example.com", "deskpass", kind="staff")
    copy = stock_copy(client, staff)
    client.post("/api/loans", headers=staff, json={"account_id": other["id"], "copy_id": copy["id"]})

    assert client.get("/api/loans", headers=user).json() == []
    assert client.get("/api/loans", params={"userId": other["id"]}, headers=user).status_code == 403
    assert len(client.get("/api/loans", headers=staff).json()) == 1


def test_mark_overdue_endpoint(client):
    patron = register(client)
    staff = login(client, "desk@example.com", "deskpass", kind="staff")
    copy = stock_copy(client, staff)
    client.post("/api/loans", headers=staff, json={
        "account_id": patron["id"], "copy_id": copy["id"], "borrow_date": "2023-12-01",
    })
    first = client.post("/api/loans/mark-overdue", params={"asOf": "2024-01-01"}, headers=staff).json()
    second = client.post("/api/loans/mark-overdue", params={"asOf": "2024-01-01"}, headers=staff).json()
    assert (first["updated"], second["updated"]) == (1, 0)


def test_admin_only_account_deletion(client):
    patron = register(client)
    staff = login(client, "desk@example.com", "deskpass", kind="staff")
    admin = login(client, "admin@example.com", "adminpass", kind="staff")
    assert client.delete(f"/api/users/{patron['id']}", headers=staff).status_code == 403
    assert client.delete(f"/api/users/{patron['id']}", headers=admin).status_code == 204
    assert client.get(f"/api/users/{patron['id']}", headers=admin).status_code == 404


def test_overdue_listing_rejects_status_filter(client):
    staff = login(client, "desk@example.com", "deskpass", kind="staff")
    resp = client.get("/api/loans", params={"overdue": "true", "status": "BORROWED"}, headers=staff)
    assert resp.status_code == 400


def test_staff_may_change_only_own_password(client):
    desk = login(client, "desk@example.com", "deskpass", kind="staff")
    admin = login(client, "admin@example.com", "adminpass", kind="staff")
    desk_id = client.get("/api/me", headers=desk).json()["id"]
    admin_id = client.get("/api/me", headers=admin).json()["id"]
    change = {"current_password": "deskpass", "new_password": "newdeskpass"}

    assert client.post(f"/api/staff/{admin_id}/change-password", json=change, headers=desk).status_code == 403
    assert client.post(f"/api/staff/{desk_id}/change-password", json=change, headers=desk).status_code == 200
    login(client, "desk@example.com", "newdeskpass", kind="staff")
    assert client.get(f"/api/staff/{desk_id}", headers=desk).status_code == 403
