import pytest
from starlette.websockets import WebSocketDisconnect


def _setup_bus_on_loop(client, headers):
    route = client.post("/driver/routes", json={"name": "Loop", "stops": ["Depot", "Market", "Station"]}, headers=headers)
    assert route.status_code == 201, route.text
    bus = client.post("/driver/bus", json={"number": "B1", "model": "Tata Starbus", "capacity": 40}, headers=headers)
    assert bus.status_code == 201, bus.text
    bound = client.put("/driver/bus/route", json={"route_id": route.json()["route_id"]}, headers=headers)
    assert bound.status_code == 200, bound.text
    return route.json(), bound.json()


def test_health(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "timestamp" in response.json()


def test_register_login_logout(client):
    created = client.post("/auth/driver/register", json={"email": "New@Example.com", "password": "secret123"})
    assert created.status_code == 201
    assert created.json()["email"] == "new@example.com"

    duplicate = client.post("/auth/driver/register", json={"email": "new@example.com", "password": "secret123"})
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "DuplicateError"

    bad = client.post("/auth/driver/login", json={"email": "new@example.com", "password": "wrong"})
    assert bad.status_code == 401

    token = client.post("/auth/driver/login", json={"email": "new@example.com", "password": "secret123"}).json()
    headers = {"Authorization": f"Bearer {token['access_token']}"}
    assert client.get("/api/drivers/profile", headers=headers).status_code == 200

    assert client.post("/auth/driver/logout", headers=headers).status_code == 200
    assert client.get("/api/drivers/profile", headers=headers).status_code == 401


def test_guarded_endpoints_need_token(client):
    assert client.get("/api/drivers/profile").status_code == 401
    assert client.get("/driver/routes", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_profile_and_location(client, headers):
    _setup_bus_on_loop(client, headers)

    moved = client.post("/api/drivers/location", json={"latitude": 19.07, "longitude": 72.87}, headers=headers)
    assert moved.status_code == 200
    assert moved.json()["location"] == {"latitude": 19.07, "longitude": 72.87}

    profile = client.get("/api/drivers/profile", headers=headers).json()
    assert profile["driver"]["email"] == "asha@example.com"
    assert profile["bus"]["number"] == "B1"
    assert profile["bus"]["latitude"] == 19.07
    assert profile["bus"]["is_moving"] is True


def test_route_validation_error_shape(client, headers):
    response = client.post("/driver/routes", json={"name": "Loop", "stops": ["Depot", " "]}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


def test_trip_lifecycle_over_http(client, headers):
    _, bus = _setup_bus_on_loop(client, headers)

    assert client.get("/driver/trip", headers=headers).json() is None

    started = client.post("/driver/trip/start", headers=headers)
    assert started.status_code == 201
    assert started.json()["progress"]["0"]["status"] == "started"

    again = client.post("/driver/trip/start", headers=headers)
    assert again.status_code == 409
    assert again.json()["error"] == "PreconditionError"

    arrived = client.post("/driver/trip/arrival", headers=headers).json()
    assert arrived["current_stop_index"] == 1

    unconfirmed = client.post("/driver/trip/end", json={}, headers=headers)
    assert unconfirmed.status_code == 400

    ended = client.post("/driver/trip/end", json={"confirm": True}, headers=headers)
    assert ended.status_code == 200
    assert ended.json()["state"] == "cancelled"

    terminal = client.post("/driver/trip/arrival", headers=headers)
    assert terminal.status_code == 409
    assert terminal.json()["error"] == "InvalidStateError"

    details = client.get(f"/passenger/sessions/{bus['bus_id']}").json()
    assert details["bus"]["number"] == "B1"
    assert details["session"]["state"] == "cancelled"


def test_start_without_bus(client, headers):
    response = client.post("/driver/trip/start", headers=headers)
    assert response.status_code == 409


def test_cannot_touch_other_drivers_routes(client, headers, other_headers):
    route, _ = _setup_bus_on_loop(client, headers)

    assert client.delete(f"/driver/routes/{route['route_id']}", headers=other_headers).status_code == 403

    client.post("/driver/bus", json={"number": "R9", "model": "Volvo", "capacity": 50}, headers=other_headers)
    bind = client.put("/driver/bus/route", json={"route_id": route["route_id"]}, headers=other_headers)
    assert bind.status_code == 403
    assert bind.json()["error"] == "ForbiddenError"


def test_delete_route_over_http(client, headers):
    route, _ = _setup_bus_on_loop(client, headers)

    assert client.delete(f"/driver/routes/{route['route_id']}", headers=headers).status_code == 200
    assert client.get("/driver/routes", headers=headers).json() == []
    assert client.get("/driver/bus", headers=headers).json()["bound_route_id"] is None
    assert client.delete(f"/driver/routes/{route['route_id']}", headers=headers).status_code == 404


def test_passenger_search(client, headers):
    _setup_bus_on_loop(client, headers)
    client.post("/driver/trip/start", headers=headers)

    results = client.get("/passenger/search", params={"origin": "depot", "destination": "station"}).json()
    assert len(results) == 1
    assert results[0]["route"]["name"] == "Loop"
    assert results[0]["live"]["current_stop_name"] == "Depot"

    assert client.get("/passenger/search", params={"origin": "station", "destination": "depot"}).json() == []
    assert client.get("/passenger/search", params={"origin": " ", "destination": "depot"}).status_code == 400


def test_stop_suggestions(client, headers):
    _setup_bus_on_loop(client, headers)

    assert client.get("/passenger/stops").json() == ["Depot", "Market", "Station"]
    assert client.get("/passenger/stops", params={"q": "ma"}).json() == ["Market"]


def test_unknown_session_details(client):
    response = client.get("/passenger/sessions/nope")
    assert response.status_code == 404


def test_session_feed_pushes_arrivals(client, headers):
    _, bus = _setup_bus_on_loop(client, headers)
    client.post("/driver/trip/start", headers=headers)

    with client.websocket_connect(f"/passenger/ws/sessions/{bus['bus_id']}") as ws:
        first = ws.receive_json()
        assert first["type"] == "snapshot"
        assert first["data"]["current_stop_index"] == 0

        client.post("/driver/trip/arrival", headers=headers)
        update = ws.receive_json()
        assert update["data"]["current_stop_index"] == 1
        assert update["data"]["progress"]["0"]["status"] == "completed"


def test_routes_feed_rejects_missing_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/driver/ws/routes") as ws:
            ws.receive_json()


def test_routes_feed_pushes_new_routes(client, headers):
    token = headers["Authorization"].split(" ", 1)[1]

    with client.websocket_connect(f"/driver/ws/routes?token={token}") as ws:
        assert ws.receive_json()["data"] == []

        client.post("/driver/routes", json={"name": "Loop", "stops": ["Depot", "Station"]}, headers=headers)
        update = ws.receive_json()
        assert [r["name"] for r in update["data"]] == ["Loop"]
