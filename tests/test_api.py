from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from userdir.database import Database
from userdir.uploads import ImageStore, ImageUpload

from conftest import PNG_BYTES, stored_images


def test_list_users_empty(client: TestClient) -> None:
    response = client.get("/api/users")
    assert response.status_code == 200
    assert response.json() == []


def test_read_user(client: TestClient, database: Database) -> None:
    user = database.create_user("Ana", "ana@example.com")

    response = client.get(f"/api/users/{user.id}")

    assert response.status_code == 200
    payload = response.json()
    assert payload["id"] == user.id
    assert payload["email"] == "ana@example.com"
    assert payload["profile_image"] is None
    assert set(payload) == {"id", "name", "email", "profile_image", "created_at", "updated_at"}


def test_read_unknown_user(client: TestClient) -> None:
    for path in ("/api/users/999", "/api/users/abc", "/api/users/1_0", "/api/users/" + "9" * 25):
        response = client.get(path)
        assert response.status_code == 404
        assert response.json() == {"error": "User not found"}


def test_update_user_with_json(client: TestClient, database: Database) -> None:
    user = database.create_user("Ana", "ana@example.com")

    response = client.put(
        f"/api/users/{user.id}", json={"name": "Ana Maria", "email": "maria@example.com"}
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["name"] == "Ana Maria"
    assert payload["email"] == "maria@example.com"
    assert database.get_user(user.id).email == "maria@example.com"


def test_update_user_keeps_image_unless_asked(
    client: TestClient, database: Database, images: ImageStore
) -> None:
    name = images.save(ImageUpload("a.png", "image/png", PNG_BYTES))
    user = database.create_user("Ana", "ana@example.com", name)

    kept = client.put(f"/api/users/{user.id}", json={"name": "Ana", "email": "ana@example.com"})
    assert kept.json()["profile_image"] == name

    removed = client.put(
        f"/api/users/{user.id}",
        json={"name": "Ana", "email": "ana@example.com", "removeImage": True},
    )
    assert removed.json()["profile_image"] is None
    assert stored_images(images) == []


def test_update_user_with_multipart_image(
    client: TestClient, database: Database, images: ImageStore
) -> None:
    user = database.create_user("Ana", "ana@example.com")

    response = client.put(
        f"/api/users/{user.id}",
        data={"name": "Ana", "email": "ana@example.com"},
        files={"profileImage": ("me.webp", PNG_BYTES, "image/webp")},
    )

    assert response.status_code == 200
    image = response.json()["profile_image"]
    assert image.endswith(".webp")
    assert stored_images(images) == [image]


def test_update_validation_errors(client: TestClient, database: Database) -> None:
    user = database.create_user("Ana", "ana@example.com")

    missing = client.put(f"/api/users/{user.id}", json={"name": "Ana"})
    assert missing.status_code == 400
    assert missing.json() == {"error": "Name and email are required"}

    bad_type = client.put(
        f"/api/users/{user.id}",
        data={"name": "Ana", "email": "ana@example.com"},
        files={"profileImage": ("photo.exe", b"MZ", "application/octet-stream")},
    )
    assert bad_type.status_code == 400
    assert bad_type.json() == {"error": "Only image files (JPEG, JPG, PNG, GIF, WEBP) are allowed."}

    unsupported = client.put(
        f"/api/users/{user.id}", content=b"name=Ana", headers={"content-type": "text/plain"}
    )
    assert unsupported.status_code == 400


def test_update_unknown_user(client: TestClient) -> None:
    response = client.put("/api/users/999", json={"name": "Ghost", "email": "ghost@example.com"})
    assert response.status_code == 404
    assert response.json() == {"error": "User not found"}


def test_delete_user_removes_image(
    client: TestClient, database: Database, images: ImageStore
) -> None:
    name = images.save(ImageUpload("a.png", "image/png", PNG_BYTES))
    user = database.create_user("Ana", "ana@example.com", name)

    response = client.delete(f"/api/users/{user.id}")

    assert response.status_code == 200
    assert response.json() == {"message": "User deleted successfully"}
    assert database.get_user(user.id) is None
    assert stored_images(images) == []


def test_delete_unknown_user(client: TestClient) -> None:
    response = client.delete("/api/users/12345")
    assert response.status_code == 404
    assert response.json() == {"error": "User not found"}


def test_delete_with_out_of_range_id_is_not_found(client: TestClient) -> None:
    response = client.delete("/api/users/" + "9" * 25)
    assert response.status_code == 404
    assert response.json() == {"error": "User not found"}


def test_unknown_api_route_returns_json(client: TestClient) -> None:
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert response.json() == {"error": "Not found"}


def test_unexpected_api_errors_return_json(app: FastAPI, monkeypatch) -> None:
    def _boom():
        raise RuntimeError("secret internals")

    monkeypatch.setattr(app.state.directory, "list_users", _boom)

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/api/users")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}
