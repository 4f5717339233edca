from callit.client.views import slugify
from callit.routers.pages import escape_like, slug_to_content


def test_home_lists_public_predictions(client, sign_in, make_prediction, alice, bob):
    make_prediction(alice, "Public call", locked=True)
    make_prediction(alice, "Secret draft")

    sign_in(bob)
    response = client.get("/")
    assert response.status_code == 200
    assert "Public call" in response.text
    assert "Secret draft" not in response.text
    assert "As predicted by Alice" in response.text


def test_home_empty(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "No predictions yet" in response.text


def test_prediction_page_by_slug(client, make_prediction, alice):
    make_prediction(alice, "Rain in Spain", locked=True)

    response = client.get(f"/prediction/{slugify('Rain in Spain')}")
    assert response.status_code == 200
    assert "Rain in Spain" in response.text
    assert "No comments yet." in response.text


def test_prediction_page_hides_drafts(client, sign_in, make_prediction, alice):
    make_prediction(alice, "Private idea")

    assert client.get("/prediction/private-idea").status_code == 404
    sign_in(alice)
    assert client.get("/prediction/private-idea").status_code == 200


def test_slug_round_trip():
    assert slugify("  The Big   Game ") == "the-big-game"
    assert slug_to_content("the-big-game") == "the big game"
    assert escape_like("100%_sure\\") == "100\\%\\_sure\\\\"


def test_slug_wildcards_match_literally(client, make_prediction, alice):
    make_prediction(alice, "Rain in Spain", locked=True)
    make_prediction(alice, "100% sure", locked=True)

    assert client.get("/prediction/%25").status_code == 404
    assert client.get("/prediction/rain_in_spain").status_code == 404
    assert client.get("/prediction/r%25").status_code == 404

    response = client.get(f"/prediction/{slugify('100% sure')}".replace("%", "%25"))
    assert response.status_code == 200
    assert "100% sure" in response.text
