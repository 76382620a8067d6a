from __future__ import annotations

from io import BytesIO

from flask import Blueprint, abort, current_app, request, send_file
from werkzeug.utils import secure_filename

from .datastore import DataStore


bp = Blueprint("images", __name__, url_prefix="/api/posts")

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def get_datastore() -> DataStore:
    return current_app.extensions["datastore"]


@bp.route("/<int:post_id>/image", methods=["GET"])
def download_image(post_id: int):
    image = get_datastore().get_image(post_id)
    if image is None or not image.data:
        abort(404, description="文章没有图片")
    return send_file(
        BytesIO(image.data),
        mimetype=image.content_type or DEFAULT_CONTENT_TYPE,
        download_name=image.filename or None,
    )


@bp.route("/<int:post_id>/image", methods=["PUT"])
def upload_image(post_id: int):
    upload = request.files.get("image")
    if upload is None:
        abort(400, description="缺少图片文件")
    data = upload.read()
    if not data:
        abort(400, description="图片文件为空")
    if len(data) > current_app.config["MAX_IMAGE_BYTES"]:
        abort(413, description="图片超过大小限制")
    datastore = get_datastore()
    try:
        datastore.save_image(
            post_id,
            data,
            content_type=upload.mimetype or None,
            filename=secure_filename(upload.filename or "") or None,
        )
    except ValueError:
        current_app.logger.warning("上传图片失败：文章 %s 不存在", post_id)
        abort(404, description="未找到文章")
    return "", 204
