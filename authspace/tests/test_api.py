from urllib.parse import parse_qs, urlparse

import pytest

from authspace.core.config import get_settings
from authspace.main import app
from authspace.models.spaces import Role
from authspace.services.user_service import SlugGrant


@pytest.fixture
def world(make_space, make_user):
    spaces = {
        "a": make_space("space-a"),
        "b": make_space("space-b"),
        "public": make_space("space-public", public=True, invitation_required=False),
    }
    users = {
        "admin": make_user("admin", is_superuser=True),
        "owner": make_user("owner", grants=[SlugGrant("space-a", Role.ADMIN)]),
        "bob": make_user("bob", grants=[SlugGrant("space-a")]),
        "carol": make_user("carol", grants=[SlugGrant("space-b")]),
    }
    return spaces, users


def _token_from(link: str) -> str:
    return parse_qs(urlparse(link).query)["token"][0]


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_login_sets_session_cookie(client, world, login):
    response = login("bob")

    assert response.headers["cache-control"] == "no-store"
    set_cookie = response.headers["set-cookie"].lower()
    assert set_cookie.startswith("session=")
    assert "httponly" in set_cookie

    me = client.get("/me")
    assert me.status_code == 200
    body = me.json()
    assert body["user"]["username"] == "bob"
    assert body["impersonated_by"] is None
    assert body["visible_space_ids"] == [world[0]["a"].id]
    assert body["spaces"] == [{"slug": "space-a", "title": "Space A", "role": "space.MEMBER"}]


def test_me_lists_every_space_for_a_superuser(client, world, login):
    login("admin")

    spaces = client.get("/me").json()["spaces"]

    assert [(space["slug"], space["role"]) for space in spaces] == [
        ("space-a", None),
        ("space-b", None),
        ("space-public", None),
    ]


def test_login_by_email(client, world, password):
    response = client.post("/login", json={"email": "carol@example.com", "password": password})
    assert response.status_code == 200
    assert client.get("/me").json()["user"]["username"] == "carol"


def test_login_failures_look_identical(client, world, password):
    unknown = client.post("/login", json={"username": "nobody", "password": password})
    wrong = client.post("/login", json={"username": "bob", "password": "wrong"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json() == {"detail": "Invalid credentials"}


def test_login_needs_exactly_one_identifier(client, password):
    response = client.post(
        "/login", json={"username": "bob", "email": "bob@example.com", "password": password}
    )
    assert response.status_code == 422


def test_me_requires_a_session(client):
    assert client.get("/me").status_code == 401


def test_invalid_cookie_falls_back_to_anonymous_and_is_cleared(client, world):
    client.cookies.set("session", "bogus")

    response = client.get("/explore")

    assert response.status_code == 200
    assert [space["slug"] for space in response.json()] == ["space-public"]
    set_cookie = response.headers.get("set-cookie", "")
    assert set_cookie.startswith("session=")
    assert "max-age=0" in set_cookie.lower()


def test_logout_terminates_the_server_side_session(client, world, login):
    login("bob")
    token = client.cookies.get("session")

    assert client.post("/logout").status_code == 200

    client.cookies.set("session", token)
    assert client.get("/me").status_code == 401


def test_impersonation_endpoints(client, world, login):
    login("admin")

    assert client.post("/impersonate/bob").status_code == 200
    me = client.get("/me").json()
    assert me["user"]["username"] == "bob"
    assert me["impersonated_by"]["username"] == "admin"

    chained = client.post("/impersonate/carol")
    assert chained.status_code == 403

    assert client.post("/impersonate/quit").status_code == 200
    me = client.get("/me").json()
    assert me["user"]["username"] == "admin"
    assert me["impersonated_by"] is None

    again = client.post("/impersonate/quit")
    assert again.status_code == 200
    assert again.json() == {"message": "Not impersonating"}


def test_non_superuser_cannot_impersonate(client, world, login):
    login("bob")
    assert client.post("/impersonate/carol").status_code == 403


def test_space_listings_follow_the_session(client, world, login):
    anonymous = client.get("/spaces")
    assert [space["slug"] for space in anonymous.json()] == ["space-public"]

    login("bob")
    assert [space["slug"] for space in client.get("/spaces").json()] == ["space-a"]

    members = client.get("/spaces/space-a/members")
    assert members.status_code == 200
    assert {(m["username"], m["role"]) for m in members.json()} == {
        ("owner", "space.ADMIN"),
        ("bob", "space.MEMBER"),
    }
    assert client.get("/spaces/space-b/members").status_code == 404


def test_request_context_is_unbound_after_a_failing_request(client, db_session, world, login):
    login("bob")

    assert client.get("/spaces/space-b/members").status_code == 404

    assert "authspace.security_context" not in db_session.info


def test_resource_endpoints_enforce_roles(client, world, login, password):
    login("bob")
    created = client.post(
        "/spaces/space-a/resources", json={"slug": "notes", "title": "Notes", "content": "hi"}
    )
    assert created.status_code == 201
    resource_id = created.json()["id"]

    assert client.get("/spaces/space-a/resources").json()[0]["slug"] == "notes"
    assert client.post(
        "/spaces/space-b/resources", json={"slug": "x", "title": "X"}
    ).status_code == 404
    assert client.delete(f"/spaces/space-a/resources/{resource_id}").status_code == 403

    client.post("/logout")
    login("owner")
    assert client.delete(f"/spaces/space-a/resources/{resource_id}").status_code == 204
    assert client.get("/spaces/space-a/resources").json() == []


def test_space_invitation_signup_flow(client, world, login, outbox, password):
    login("owner")
    created = client.post(
        "/spaces/space-a/invitations", json={"email": "new@example.com", "role": "space.MEMBER"}
    )
    assert created.status_code == 201
    assert client.get("/spaces/space-a/invitations").json()[0]["email"] == "new@example.com"

    kind, to_email, link = outbox[-1]
    assert (kind, to_email) == ("invitation", "new@example.com")
    parsed = urlparse(link)
    assert (parsed.scheme, parsed.netloc, parsed.path) == ("https", "authspace.local", "/signup/")
    token = _token_from(link)

    client.post("/logout")
    verified = client.post("/invitations/verify", json={"token": token})
    assert verified.status_code == 200
    assert verified.json()["email"] == "new@example.com"

    signup = client.post(
        "/signup", json={"username": "newbie", "password": password, "token": token}
    )
    assert signup.status_code == 201

    reused = client.post("/signup", json={"username": "other", "password": password, "token": token})
    assert reused.status_code == 409
    assert reused.json() == {"detail": "Invitation already used"}

    login("newbie")
    assert [space["slug"] for space in client.get("/spaces").json()] == ["space-a"]


def test_members_cannot_grant_roles_above_their_own(client, world, login):
    login("bob")
    response = client.post(
        "/spaces/space-a/invitations", json={"email": "x@example.com", "role": "space.ADMIN"}
    )
    assert response.status_code == 403


def test_multi_space_invitations(client, world, login, outbox):
    login("admin")
    response = client.post(
        "/invitations",
        json={
            "email": "multi@example.com",
            "spaces": [
                {"space_slug": "space-a", "role": "space.ADMIN"},
                {"space_slug": "space-b"},
            ],
        },
    )
    assert response.status_code == 201
    assert [i["email"] for i in client.get("/invitations").json()] == ["multi@example.com"]
    assert outbox[-1][1] == "multi@example.com"

    missing = client.post(
        "/invitations",
        json={"email": "x@example.com", "spaces": [{"space_slug": "nowhere"}]},
    )
    assert missing.status_code == 404


def test_invalid_invitation_token(client, world):
    response = client.post("/invitations/verify", json={"token": "garbage"})
    assert response.status_code == 404
    assert response.json() == {"detail": "Invalid invitation token"}


def test_open_signup_rules(client, world, password):
    def signup(username, space):
        return client.post(
            "/signup",
            json={
                "username": username,
                "password": password,
                "email": f"{username}@example.com",
                "space": space,
            },
        )

    assert signup("dora", "space-public").status_code == 201
    assert signup("eve", "space-a").status_code == 403
    assert signup("finn", "nowhere").status_code == 404
    assert signup("dora", "space-public").status_code == 409


def test_open_signup_needs_email_and_space(client, password):
    response = client.post("/signup", json={"username": "x", "password": password})
    assert response.status_code == 422


def test_open_signup_disabled_by_setting(client, world, password):
    app.dependency_overrides[get_settings] = lambda: get_settings().model_copy(
        update={"invitation_required": True}
    )

    response = client.post(
        "/signup",
        json={
            "username": "dora",
            "password": password,
            "email": "dora@example.com",
            "space": "space-public",
        },
    )

    assert response.status_code == 403
    assert response.json() == {"detail": "Invitation required"}


def test_signed_in_users_cannot_sign_up(client, world, login, password):
    login("bob")
    response = client.post(
        "/signup",
        json={"username": "x", "password": password, "email": "x@example.com", "space": "space-public"},
    )
    assert response.status_code == 409


def test_existing_user_accepts_invitation(client, world, login, outbox, password):
    client.post(
        "/signup",
        json={
            "username": "alice",
            "password": password,
            "email": "alice@example.com",
            "space": "space-public",
        },
    )
    login("admin")
    client.post(
        "/invitations",
        json={
            "email": "alice@example.com",
            "spaces": [
                {"space_slug": "space-public", "role": "space.ADMIN"},
                {"space_slug": "space-b"},
            ],
        },
    )
    token = _token_from(outbox[-1][2])
    client.post("/logout")

    login("alice")
    assert client.post("/invitations/accept", json={"token": token}).status_code == 200

    members = client.get("/spaces/space-public/members").json()
    assert [(m["username"], m["role"]) for m in members] == [("alice", "space.MEMBER")]
    slugs = sorted(space["slug"] for space in client.get("/spaces").json())
    assert slugs == ["space-b", "space-public"]


def test_audit_events_are_scoped(client, world, login):
    assert client.get("/audit-events").status_code == 401

    login("bob")
    events = client.get("/audit-events").json()

    assert events
    assert all(world[0]["a"].id in event["space_ids"] for event in events)
    assert {event["author_username"] for event in events} == {"Anonymous"}
