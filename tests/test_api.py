"""HTTP API tests through the Flask test client."""

import io
import logging

from myblog import create_app


def _create(client, title, tags=(), text="body"):
    response = client.post("/api/posts", json={"title": title, "text": text, "tags": list(tags)})
    assert response.status_code == 201
    return response.get_json()


class TestPostList:
    def test_search_with_page_flags(self, client) -> None:
        for index in range(15):
            _create(client, f"Post {index}", tags=["Bulk"])

        first = client.get("/api/posts", query_string={"search": "#bulk", "pageNumber": 1, "pageSize": 10})
        second = client.get("/api/posts", query_string={"search": "#bulk", "pageNumber": 2, "pageSize": 10})

        body = first.get_json()
        assert len(body["posts"]) == 10
        assert body["hasPrev"] is False
        assert body["hasNext"] is True
        assert body["lastPage"] == 2
        body = second.get_json()
        assert len(body["posts"]) == 5
        assert body["hasPrev"] is True
        assert body["hasNext"] is False

    def test_empty_store(self, client) -> None:
        body = client.get("/api/posts").get_json()
        assert body == {"posts": [], "hasPrev": False, "hasNext": False, "lastPage": 0}

    def test_page_past_the_end_of_empty_store(self, client) -> None:
        body = client.get("/api/posts", query_string={"pageNumber": 3}).get_json()
        assert body == {"posts": [], "hasPrev": False, "hasNext": False, "lastPage": 0}

    def test_huge_page_number_returns_empty_page(self, client) -> None:
        _create(client, "Only")
        response = client.get("/api/posts", query_string={"pageNumber": 10**18, "pageSize": 100})
        assert response.status_code == 200
        body = response.get_json()
        assert body["posts"] == []
        assert body["hasPrev"] is True
        assert body["hasNext"] is False
        assert body["lastPage"] == 1

    def test_invalid_numbers_fall_back_to_defaults(self, client) -> None:
        _create(client, "Only")
        response = client.get("/api/posts", query_string={"pageNumber": "abc", "pageSize": "-1"})
        assert response.status_code == 200
        assert len(response.get_json()["posts"]) == 1

    def test_post_payload_shape(self, client) -> None:
        _create(client, "Java Tutorial", tags=["spring", "Java"], text="Hello")
        post = client.get("/api/posts", query_string={"search": "tutorial"}).get_json()["posts"][0]
        assert post == {
            "id": 1,
            "title": "Java Tutorial",
            "text": "Hello",
            "tags": ["Java", "spring"],
            "likesCount": 0,
            "commentsCount": 0,
        }


class TestPostCrud:
    def test_create_requires_title(self, client) -> None:
        response = client.post("/api/posts", json={"title": "  ", "text": "x"})
        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_create_rejects_non_json(self, client) -> None:
        response = client.post("/api/posts", data="title=x")
        assert response.status_code == 400

    def test_get_update_delete(self, client) -> None:
        created = _create(client, "Draft", tags=["a"])
        url = f"/api/posts/{created['id']}"

        assert client.get(url).get_json()["title"] == "Draft"
        updated = client.put(url, json={"title": "Final", "text": "done", "tags": ["b"]}).get_json()
        assert updated["title"] == "Final"
        assert updated["tags"] == ["b"]
        assert client.delete(url).status_code == 204
        assert client.get(url).status_code == 404
        assert client.delete(url).status_code == 404

    def test_update_missing(self, client) -> None:
        response = client.put("/api/posts/99", json={"title": "x", "text": "y", "tags": []})
        assert response.status_code == 404

    def test_likes(self, client) -> None:
        created = _create(client, "Likeable")
        assert client.post(f"/api/posts/{created['id']}/likes").get_json() == 1
        assert client.post(f"/api/posts/{created['id']}/likes").get_json() == 2
        assert client.post("/api/posts/99/likes").status_code == 404


class TestComments:
    def test_comment_lifecycle(self, client) -> None:
        post_id = _create(client, "Discussed")["id"]
        base = f"/api/posts/{post_id}/comments"

        added = client.post(base, json={"text": "  hello  "}).get_json()
        assert added == {"id": added["id"], "text": "hello", "postId": post_id}
        assert client.get(base).get_json() == [added]
        assert client.get(f"/api/posts/{post_id}").get_json()["commentsCount"] == 1

        updated = client.put(f"{base}/{added['id']}", json={"text": "edited"}).get_json()
        assert updated["text"] == "edited"
        assert client.get(f"{base}/{added['id']}").get_json()["text"] == "edited"

        assert client.delete(f"{base}/{added['id']}").status_code == 204
        assert client.get(f"{base}/{added['id']}").status_code == 404

    def test_blank_comment_rejected(self, client) -> None:
        post_id = _create(client, "Quiet")["id"]
        assert client.post(f"/api/posts/{post_id}/comments", json={"text": "   "}).status_code == 400

    def test_unknown_post(self, client) -> None:
        assert client.get("/api/posts/99/comments").status_code == 404
        assert client.post("/api/posts/99/comments", json={"text": "hi"}).status_code == 404


class TestImages:
    def test_upload_and_download(self, client) -> None:
        post_id = _create(client, "Pictured")["id"]
        url = f"/api/posts/{post_id}/image"

        assert client.get(url).status_code == 404
        response = client.put(
            url,
            data={"image": (io.BytesIO(b"\x89PNG-data"), "../cat.png", "image/png")},
            content_type="multipart/form-data",
        )
        assert response.status_code == 204

        downloaded = client.get(url)
        assert downloaded.status_code == 200
        assert downloaded.data == b"\x89PNG-data"
        assert downloaded.mimetype == "image/png"

    def test_upload_validation(self, client) -> None:
        post_id = _create(client, "Pictured")["id"]
        url = f"/api/posts/{post_id}/image"

        missing = client.put(url, data={}, content_type="multipart/form-data")
        empty = client.put(
            url, data={"image": (io.BytesIO(b""), "empty.png")}, content_type="multipart/form-data"
        )
        too_large = client.put(
            url, data={"image": (io.BytesIO(b"x" * 65), "big.png")}, content_type="multipart/form-data"
        )
        unknown = client.put(
            "/api/posts/99/image", data={"image": (io.BytesIO(b"x"), "a.png")}, content_type="multipart/form-data"
        )

        assert missing.status_code == 400
        assert empty.status_code == 400
        assert too_large.status_code == 413
        assert unknown.status_code == 404


class TestCors:
    def test_configured_origin_allowed(self, client) -> None:
        response = client.get("/api/posts", headers={"Origin": "http://localhost"})
        assert response.headers.get("Access-Control-Allow-Origin") == "http://localhost"
        assert response.headers.get("Access-Control-Allow-Credentials") == "true"


def test_unknown_route_returns_json_error(client) -> None:
    response = client.get("/api/nothing-here")
    assert response.status_code == 404
    assert "error" in response.get_json()


def test_log_level_reaches_module_loggers(tmp_path) -> None:
    previous = logging.getLogger("myblog").level
    app = create_app({"TESTING": True, "BLOG_DATA_DIR": str(tmp_path), "LOG_LEVEL": "DEBUG"})
    try:
        assert app.logger.level == logging.DEBUG
        assert logging.getLogger("myblog.search").getEffectiveLevel() == logging.DEBUG
    finally:
        app.extensions["datastore"].close()
        app.logger.setLevel(previous)
