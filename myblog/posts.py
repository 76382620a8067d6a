from __future__ import annotations

from typing import Any, Dict, List, Tuple

from flask import Blueprint, abort, current_app, jsonify, request

from .datastore import DataStore, Post
from .search import DEFAULT_PAGE_SIZE, PageResult, PostSearchEngine, parse_search


bp = Blueprint("posts", __name__, url_prefix="/api/posts")


def get_datastore() -> DataStore:
    return current_app.extensions["datastore"]


def get_search_engine() -> PostSearchEngine:
    return current_app.extensions["post_search"]


def serialize_post(post: Post) -> Dict[str, Any]:
    return {
        "id": post.id,
        "title": post.title,
        "text": post.text,
        "tags": sorted((tag.name for tag in post.tags), key=lambda name: (name.lower(), name)),
        "likesCount": post.likes_count,
        "commentsCount": post.comments_count,
    }


def serialize_page(page: PageResult[Post]) -> Dict[str, Any]:
    total_pages = page.total_pages
    return {
        "posts": [serialize_post(post) for post in page.content],
        "hasPrev": page.page_number > 1 and total_pages > 0,
        "hasNext": page.page_number < total_pages,
        "lastPage": total_pages,
    }


def _read_post_payload() -> Tuple[str, str, List[str]]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, description="请求体必须是 JSON 对象")
    title = payload.get("title")
    text = payload.get("text", "")
    tags = payload.get("tags") or []
    if not isinstance(title, str) or not title.strip():
        abort(400, description="标题不能为空")
    if not isinstance(text, str):
        abort(400, description="正文必须是字符串")
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        abort(400, description="标签必须是字符串列表")
    return title.strip(), text, tags


@bp.route("", methods=["GET"])
def list_posts():
    page_number = request.args.get("pageNumber", default=1, type=int)
    page_size = request.args.get("pageSize", default=DEFAULT_PAGE_SIZE, type=int)
    criteria = parse_search(request.args.get("search"))
    page = get_search_engine().search(criteria, page_number, page_size)
    return jsonify(serialize_page(page))


@bp.route("", methods=["POST"])
def create_post():
    title, text, tags = _read_post_payload()
    post = get_datastore().create_post(title, text, tags)
    return jsonify(serialize_post(post)), 201


@bp.route("/<int:post_id>", methods=["GET"])
def get_post(post_id: int):
    post = get_datastore().get_post(post_id)
    if post is None:
        abort(404, description="未找到文章")
    return jsonify(serialize_post(post))


@bp.route("/<int:post_id>", methods=["PUT"])
def update_post(post_id: int):
    title, text, tags = _read_post_payload()
    post = get_datastore().update_post(post_id, title=title, text=text, tags=tags)
    if post is None:
        abort(404, description="未找到文章")
    return jsonify(serialize_post(post))


@bp.route("/<int:post_id>", methods=["DELETE"])
def delete_post(post_id: int):
    if not get_datastore().delete_post(post_id):
        abort(404, description="未找到文章")
    return "", 204


@bp.route("/<int:post_id>/likes", methods=["POST"])
def like_post(post_id: int):
    likes = get_datastore().increment_likes(post_id)
    if likes is None:
        abort(404, description="未找到文章")
    return jsonify(likes)
