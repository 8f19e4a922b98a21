"""Tests for the REST endpoints: auth, users, projects, assistant, rooms, health."""

from jose import jwt

from conftest import auth_headers, register


def test_root_and_health(client):
    assert client.get("/").json()["endpoints"]["websocket"] == "/ws"

    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "healthy"
    assert data["connections"] == 0
    assert data["storage"] == "memory"


class TestAuth:

    def test_register_returns_user_and_token(self, client, settings):
        data = register(client, "  Alice@Example.com ")
        assert data["user"]["email"] == "alice@example.com"
        assert "_id" in data["user"]

        claims = jwt.decode(data["token"], settings.JWT_SECRET, algorithms=["HS256"])
        assert claims["sub"] == data["user"]["_id"]
        assert claims["email"] == "alice@example.com"

    def test_duplicate_email_is_rejected(self, client):
        register(client, "alice@example.com")
        r = client.post("/auth/register", json={"email": "ALICE@example.com", "password": "x"})
        assert r.status_code == 400
        assert r.json()["detail"] == "User already exists"

    def test_register_validates_input(self, client):
        assert client.post("/auth/register", json={"email": "a@b", "password": "pw"}).status_code == 422
        assert client.post("/auth/register", json={"email": "alice@example.com", "password": ""}).status_code == 422

    def test_login(self, client):
        register(client, "alice@example.com", "right-password")

        ok = client.post("/auth/login", json={"email": "alice@example.com", "password": "right-password"})
        assert ok.status_code == 200
        token = ok.json()["token"]
        me = client.get("/auth/me", headers=auth_headers(token))
        assert me.json()["user"]["email"] == "alice@example.com"

        bad = client.post("/auth/login", json={"email": "alice@example.com", "password": "wrong"})
        assert bad.status_code == 401
        assert bad.json()["detail"] == "Invalid email or password"

        unknown = client.post("/auth/login", json={"email": "nobody@example.com", "password": "x"})
        assert unknown.status_code == 401

    def test_protected_routes_need_a_valid_token(self, client):
        assert client.get("/users/profile").status_code == 401
        assert client.get("/users/profile", headers=auth_headers("not-a-jwt")).status_code == 401

    def test_token_cookie_is_accepted(self, client):
        token = register(client, "alice@example.com")["token"]
        r = client.get("/users/profile", headers={"Cookie": f"token={token}"})
        assert r.json()["user"]["email"] == "alice@example.com"


class TestUsersAndProjects:

    def test_all_users_excludes_caller(self, client):
        alice = register(client, "alice@example.com")
        register(client, "bobby@example.com")
        register(client, "carol@example.com")

        r = client.get("/users/all", headers=auth_headers(alice["token"]))
        emails = sorted(u["email"] for u in r.json()["users"])
        assert emails == ["bobby@example.com", "carol@example.com"]

    def test_project_lifecycle(self, client):
        alice = register(client, "alice@example.com")
        bob = register(client, "bobby@example.com")
        a, b = auth_headers(alice["token"]), auth_headers(bob["token"])

        created = client.post("/projects", json={"name": "  Apollo "}, headers=a)
        assert created.status_code == 201
        project = created.json()["project"]
        assert project["name"] == "apollo"
        assert project["users"] == [alice["user"]["_id"]]

        assert client.post("/projects", json={"name": "APOLLO"}, headers=a).status_code == 400
        assert client.post("/projects", json={"name": "  "}, headers=a).status_code == 400

        # bob is not a member yet
        assert client.get(f"/projects/{project['_id']}", headers=b).status_code == 403
        assert client.get("/projects", headers=b).json()["projects"] == []
        denied = client.put("/projects/add-users", json={"projectId": project["_id"], "users": [bob["user"]["_id"]]}, headers=b)
        assert denied.status_code == 403

        added = client.put(
            "/projects/add-users",
            json={"projectId": project["_id"], "users": [bob["user"]["_id"], bob["user"]["_id"]]},
            headers=a,
        )
        assert added.status_code == 200
        assert added.json()["project"]["users"] == [alice["user"]["_id"], bob["user"]["_id"]]

        detail = client.get(f"/projects/{project['_id']}", headers=b).json()["project"]
        assert [m["email"] for m in detail["members"]] == ["alice@example.com", "bobby@example.com"]
        assert [p["name"] for p in client.get("/projects", headers=b).json()["projects"]] == ["apollo"]

    def test_add_users_rejects_unknown_ids_and_projects(self, client):
        alice = register(client, "alice@example.com")
        a = auth_headers(alice["token"])
        project = client.post("/projects", json={"name": "apollo"}, headers=a).json()["project"]

        r = client.put("/projects/add-users", json={"projectId": project["_id"], "users": ["ghost"]}, headers=a)
        assert r.status_code == 400
        r = client.put("/projects/add-users", json={"projectId": "missing", "users": ["ghost"]}, headers=a)
        assert r.status_code == 404
        assert client.get("/projects/missing", headers=a).status_code == 404


class TestAssistantEndpoints:

    def test_get_result(self, client):
        token = register(client, "alice@example.com")["token"]
        r = client.get("/ai/get-result", params={"prompt": "what is 2+2"}, headers=auth_headers(token))
        assert r.status_code == 200
        assert r.json() == {"result": "4"}

    def test_get_result_requires_prompt_and_auth(self, client):
        token = register(client, "alice@example.com")["token"]
        assert client.get("/ai/get-result", headers=auth_headers(token)).status_code == 400
        assert client.get("/ai/get-result", params={"prompt": "hi"}).status_code == 401

    def test_health(self, client):
        r = client.get("/ai/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


def test_rooms_listing_follows_presence(client):
    token = register(client, "alice@example.com")["token"]
    headers = auth_headers(token)
    assert client.get("/rooms", headers=headers).json() == {"rooms": {}}

    client.get("/chat/messages", params={"room": "general"}, headers=headers)

    rooms = client.get("/rooms", headers=headers).json()["rooms"]
    assert rooms["general"]["member_count"] == 1
    presence = client.get("/rooms/general/presence", headers=headers).json()
    assert [p["handle"] for p in presence["participants"]] == ["alice@example.com"]
