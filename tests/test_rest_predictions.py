from datetime import datetime

from sqlmodel import select

from callit.models import Category, Comment, Prediction, Vote

END_DATE = "2026-12-31T00:00:00"


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_create_prediction(sign_in, alice):
    client = sign_in(alice)
    response = client.post("/rest/predictions", json={"content": "  It will snow  ", "end_date": END_DATE})
    assert response.status_code == 201
    data = response.json()
    assert data["content"] == "It will snow"
    assert data["user_id"] == alice.id
    assert data["is_locked"] is False
    assert data["locked_at"] is None
    assert data["result_text"] is None


def test_create_prediction_with_client_id(sign_in, session, alice):
    client = sign_in(alice)
    response = client.post("/rest/predictions", json={"id": "my-own-id", "content": "Tails", "end_date": END_DATE})
    assert response.status_code == 201
    assert response.json()["id"] == "my-own-id"
    session.expunge_all()

    response = client.post("/rest/predictions", json={"id": "my-own-id", "content": "Heads", "end_date": END_DATE})
    assert response.status_code == 409


def test_create_prediction_validation(client, sign_in, alice, bob):
    assert client.post("/rest/predictions", json={"content": "x", "end_date": END_DATE}).status_code == 401

    sign_in(alice)
    cases = [
        {"content": "   ", "end_date": END_DATE},
        {"content": "No date"},
        {"content": "Locked already", "end_date": END_DATE, "is_locked": True},
        {"content": "With result", "end_date": END_DATE, "result_text": "Yes"},
        {"content": "Bad column", "end_date": END_DATE, "bogus": 1},
        {"content": "Bad category", "end_date": END_DATE, "category_id": "missing"},
    ]
    for payload in cases:
        assert client.post("/rest/predictions", json=payload).status_code == 400, payload

    response = client.post("/rest/predictions", json={"content": "As Bob", "end_date": END_DATE, "user_id": bob.id})
    assert response.status_code == 403


def test_unlocked_predictions_are_private(client, sign_in, make_prediction, alice, bob):
    draft = make_prediction(alice, "Draft")
    public = make_prediction(alice, "Public", locked=True)

    sign_in(alice)
    ids = {row["id"] for row in client.get("/rest/predictions").json()}
    assert ids == {draft.id, public.id}

    sign_in(bob)
    ids = {row["id"] for row in client.get("/rest/predictions").json()}
    assert ids == {public.id}

    sign_in(None)
    ids = {row["id"] for row in client.get("/rest/predictions_with_profiles").json()}
    assert ids == {public.id}


def test_predictions_with_profiles_shape(sign_in, session, make_prediction, alice, bob):
    category = Category(name="Weather", icon="Globe", created_by=alice.id)
    session.add(category)
    session.commit()
    prediction = make_prediction(alice, "Sunny", locked=True, category_id=category.id)
    session.add(Vote(prediction_id=prediction.id, user_id=bob.id, vote_type="agree"))
    session.add(Comment(prediction_id=prediction.id, user_id=bob.id, content="Sure"))
    session.commit()

    client = sign_in(bob)
    rows = client.get("/rest/predictions_with_profiles", params={"id": f"eq.{prediction.id}"}).json()
    assert len(rows) == 1
    row = rows[0]
    assert row["display_name"] == "Alice"
    assert row["category_name"] == "Weather"
    assert row["category_icon"] == "Globe"
    assert row["agree_count"] == 1
    assert row["disagree_count"] == 0
    assert row["comment_count"] == 1


def test_filters_order_and_limit(client, sign_in, make_prediction, alice):
    first = make_prediction(alice, "First", locked=True, created_at=datetime(2026, 1, 1))
    second = make_prediction(alice, "Second", locked=True, created_at=datetime(2026, 1, 2),
                             result_text="Yes", is_correct=True, result_added_at=datetime(2026, 1, 3))
    sign_in(alice)

    rows = client.get("/rest/predictions", params={"order": "created_at.desc", "limit": "1"}).json()
    assert [row["id"] for row in rows] == [second.id]

    rows = client.get("/rest/predictions", params={"result_text": "is.null"}).json()
    assert [row["id"] for row in rows] == [first.id]

    rows = client.get("/rest/predictions", params={"is_correct": "is.true"}).json()
    assert [row["id"] for row in rows] == [second.id]

    assert client.get("/rest/predictions", params={"nope": "eq.1"}).status_code == 400
    assert client.get("/rest/predictions", params={"content": "like.x"}).status_code == 400
    assert client.get("/rest/predictions", params={"limit": "many"}).status_code == 400
    assert client.get("/rest/unknown").status_code == 404


def test_lock_once(client, sign_in, make_prediction, alice):
    prediction = make_prediction(alice, "Lock me")
    sign_in(alice)

    response = client.patch("/rest/predictions", params={"id": f"eq.{prediction.id}"}, json={"is_locked": True})
    assert response.status_code == 200
    rows = response.json()
    assert rows[0]["is_locked"] is True
    assert rows[0]["locked_at"] is not None

    response = client.patch("/rest/predictions", params={"id": f"eq.{prediction.id}"}, json={"is_locked": True})
    assert response.status_code == 409
    assert response.json()["detail"] == "Prediction is already locked"


def test_locked_at_only_with_lock(client, sign_in, make_prediction, alice):
    prediction = make_prediction(alice, "Sneaky")
    sign_in(alice)
    response = client.patch(
        "/rest/predictions",
        params={"id": f"eq.{prediction.id}"},
        json={"locked_at": "2026-01-01T00:00:00"}
    )
    assert response.status_code == 400


def test_edit_rules(client, sign_in, session, make_prediction, alice, bob):
    draft = make_prediction(alice, "Draft")
    locked = make_prediction(alice, "Locked", locked=True)

    sign_in(alice)
    response = client.patch("/rest/predictions", params={"id": f"eq.{draft.id}"}, json={"content": "Edited"})
    assert response.status_code == 200
    assert response.json()[0]["content"] == "Edited"

    response = client.patch("/rest/predictions", params={"id": f"eq.{draft.id}"}, json={"content": " "})
    assert response.status_code == 400

    response = client.patch("/rest/predictions", params={"id": f"eq.{locked.id}"}, json={"content": "Changed"})
    assert response.status_code == 409

    sign_in(bob)
    response = client.patch("/rest/predictions", params={"id": f"eq.{locked.id}"}, json={"content": "Mine now"})
    assert response.status_code == 403
    # Bob cannot see the draft, so there is nothing to update
    response = client.patch("/rest/predictions", params={"id": f"eq.{draft.id}"}, json={"content": "Mine now"})
    assert response.status_code == 200
    assert response.json() == []

    assert client.patch("/rest/predictions", json={"content": "All of them"}).status_code == 400


def test_record_result(client, sign_in, session, make_prediction, alice):
    draft = make_prediction(alice, "Too early")
    prediction = make_prediction(alice, "Called it", locked=True)
    sign_in(alice)

    response = client.patch(
        "/rest/predictions",
        params={"id": f"eq.{draft.id}"},
        json={"result_text": "Nope", "is_correct": False}
    )
    assert response.status_code == 409

    response = client.patch(
        "/rest/predictions",
        params={"id": f"eq.{prediction.id}"},
        json={"result_text": "Half way"}
    )
    assert response.status_code == 400
    session.refresh(prediction)
    assert prediction.result_text is None

    response = client.patch(
        "/rest/predictions",
        params={"id": f"eq.{prediction.id}"},
        json={"result_text": "It happened", "is_correct": True}
    )
    assert response.status_code == 200
    row = response.json()[0]
    assert row["result_text"] == "It happened"
    assert row["is_correct"] is True
    assert row["result_added_at"] is not None

    response = client.patch(
        "/rest/predictions",
        params={"id": f"eq.{prediction.id}"},
        json={"result_text": "Changed my mind", "is_correct": False}
    )
    assert response.status_code == 409


def test_admin_files_uncategorized(client, sign_in, session, make_prediction, alice, admin):
    category = Category(name="Sports", icon="Trophy", created_by=admin.id)
    session.add(category)
    session.commit()
    prediction = make_prediction(alice, "Home win", locked=True)

    sign_in(admin)
    response = client.patch(
        "/rest/predictions",
        params={"id": f"eq.{prediction.id}"},
        json={"category_id": category.id}
    )
    assert response.status_code == 200
    assert response.json()[0]["category_id"] == category.id

    # Already filed
    response = client.patch(
        "/rest/predictions",
        params={"id": f"eq.{prediction.id}"},
        json={"category_id": None}
    )
    assert response.status_code == 403


def test_delete_rules(client, sign_in, make_prediction, alice, bob):
    draft = make_prediction(alice, "Draft")
    locked = make_prediction(alice, "Locked", locked=True)

    sign_in(alice)
    response = client.delete("/rest/predictions", params={"id": f"eq.{locked.id}"})
    assert response.status_code == 409

    sign_in(bob)
    response = client.delete("/rest/predictions", params={"id": f"eq.{draft.id}"})
    assert response.status_code == 200
    assert response.json() == []

    sign_in(alice)
    response = client.delete("/rest/predictions", params={"id": f"eq.{draft.id}"})
    assert response.status_code == 200
    assert [row["id"] for row in response.json()] == [draft.id]
    ids = {row["id"] for row in client.get("/rest/predictions").json()}
    assert ids == {locked.id}


def test_delete_removes_dependents(client, sign_in, session, make_prediction, alice, bob):
    prediction = make_prediction(alice, "Short lived")
    session.add(Vote(prediction_id=prediction.id, user_id=bob.id, vote_type="disagree"))
    session.add(Comment(prediction_id=prediction.id, user_id=alice.id, content="Hmm"))
    session.commit()

    sign_in(alice)
    response = client.delete("/rest/predictions", params={"id": f"eq.{prediction.id}"})
    assert response.status_code == 200

    assert session.exec(select(Vote)).all() == []
    assert session.exec(select(Comment)).all() == []
    assert session.exec(select(Prediction)).all() == []


def test_views_are_read_only(sign_in, make_prediction, alice):
    client = sign_in(alice)
    response = client.post("/rest/predictions_with_profiles", json={"content": "x", "end_date": END_DATE})
    assert response.status_code == 405
