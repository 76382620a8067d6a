from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, abort, current_app, jsonify, request

from .datastore import Comment, DataStore


bp = Blueprint("comments", __name__, url_prefix="/api/posts")


def get_datastore() -> DataStore:
    return current_app.extensions["datastore"]


def serialize_comment(comment: Comment) -> Dict[str, Any]:
    return {"id": comment.id, "text": comment.text, "postId": comment.post_id}


def _require_post(datastore: DataStore, post_id: int) -> None:
    if not datastore.post_exists(post_id):
        current_app.logger.warning("评论操作失败：文章 %s 不存在", post_id)
        abort(404, description="未找到文章")


def _read_comment_text() -> str:
    payload = request.get_json(silent=True)
    text = payload.get("text") if isinstance(payload, dict) else None
    if not isinstance(text, str) or not text.strip():
        abort(400, description="评论内容不能为空")
    return text.strip()


@bp.route("/<int:post_id>/comments", methods=["GET"])
def list_comments(post_id: int):
    datastore = get_datastore()
    _require_post(datastore, post_id)
    return jsonify([serialize_comment(comment) for comment in datastore.list_comments(post_id)])


@bp.route("/<int:post_id>/comments/<int:comment_id>", methods=["GET"])
def get_comment(post_id: int, comment_id: int):
    datastore = get_datastore()
    _require_post(datastore, post_id)
    comment = datastore.get_comment(post_id, comment_id)
    if comment is None:
        abort(404, description="未找到评论")
    return jsonify(serialize_comment(comment))


@bp.route("/<int:post_id>/comments", methods=["POST"])
def add_comment(post_id: int):
    text = _read_comment_text()
    datastore = get_datastore()
    try:
        comment = datastore.add_comment(post_id, text)
    except ValueError:
        abort(404, description="未找到文章")
    return jsonify(serialize_comment(comment))


@bp.route("/<int:post_id>/comments/<int:comment_id>", methods=["PUT"])
def update_comment(post_id: int, comment_id: int):
    text = _read_comment_text()
    datastore = get_datastore()
    _require_post(datastore, post_id)
    comment = datastore.update_comment(post_id, comment_id, text)
    if comment is None:
        abort(404, description="未找到评论")
    return jsonify(serialize_comment(comment))


@bp.route("/<int:post_id>/comments/<int:comment_id>", methods=["DELETE"])
def delete_comment(post_id: int, comment_id: int):
    datastore = get_datastore()
    _require_post(datastore, post_id)
    if not datastore.delete_comment(post_id, comment_id):
        abort(404, description="未找到评论")
    return "", 204
