"""
Tests for the draft video endpoints (create, list, get).
"""

from datetime import datetime, timedelta, timezone

from conftest import OTHER_USER_ID, OWNER_ID, auth_headers, fetch_video_row, insert_video


class TestCreateVideo:
    def test_create_returns_201(self, client, test_db_url):
        response = client.post(
            "/api/videos",
            json={"title": "My first video", "description": "Hello"},
            headers=auth_headers(),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "My first video"
        assert data["description"] == "Hello"
        assert data["user_id"] == OWNER_ID
        assert data["video_url"] is None
        assert fetch_video_row(test_db_url, data["id"])["user_id"] == OWNER_ID

    def test_title_is_trimmed(self, client):
        response = client.post("/api/videos", json={"title": "  Padded  "}, headers=auth_headers())
        assert response.status_code == 201
        assert response.json()["title"] == "Padded"

    def test_blank_title_rejected(self, client):
        response = client.post("/api/videos", json={"title": "   "}, headers=auth_headers())
        assert response.status_code == 400
        assert "title" in response.json()["detail"]

    def test_missing_title_rejected(self, client):
        response = client.post("/api/videos", json={}, headers=auth_headers())
        assert response.status_code == 400

    def test_requires_auth(self, client):
        response = client.post("/api/videos", json={"title": "x"})
        assert response.status_code == 401


class TestListVideos:
    def test_lists_only_own_videos_newest_first(self, client, test_db_url):
        now = datetime.now(timezone.utc)
        older = insert_video(test_db_url, OWNER_ID, title="Older", created_at=now - timedelta(hours=1))
        newer = insert_video(test_db_url, OWNER_ID, title="Newer", created_at=now)
        insert_video(test_db_url, OTHER_USER_ID, title="Someone else's")

        response = client.get("/api/videos", headers=auth_headers())

        assert response.status_code == 200
        assert [v["id"] for v in response.json()] == [newer, older]

    def test_empty_list(self, client):
        response = client.get("/api/videos", headers=auth_headers("user-with-nothing"))
        assert response.status_code == 200
        assert response.json() == []


class TestGetVideo:
    def test_get_own_video(self, client, owned_video):
        response = client.get(f"/api/videos/{owned_video}", headers=auth_headers())
        assert response.status_code == 200
        assert response.json()["title"] == "Owned Video"

    def test_not_found(self, client):
        response = client.get("/api/videos/missing-id", headers=auth_headers())
        assert response.status_code == 404
        assert response.json()["detail"] == "Video not found"

    def test_not_owned(self, client, owned_video):
        response = client.get(f"/api/videos/{owned_video}", headers=auth_headers(OTHER_USER_ID))
        assert response.status_code == 403
        assert response.json()["detail"] == "Video not owned by this user"

    def test_overlong_id(self, client):
        response = client.get(f"/api/videos/{'x' * 65}", headers=auth_headers())
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid video ID"
