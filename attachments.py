import io
import os

from flask import Blueprint, abort, current_app, redirect, request, send_file, send_from_directory, url_for

from models import Attachment, db
from storage import get_storage

bp = Blueprint("attachments", __name__, url_prefix="/attachments")

PLACEHOLDER = "image-404.svg"


def serve_attachment(attachment, as_attachment=False):
    """Stream the bytes of `attachment` from wherever it is stored."""
    upload = get_storage(attachment.location).get_file(attachment.file, attachment.container)
    if upload is None:
        current_app.logger.warning("Missing file for attachment %s", attachment.guid)
        abort(404)
    data, mime_type = upload
    return send_file(
        io.BytesIO(data),
        mimetype=attachment.mime_type or mime_type,
        as_attachment=as_attachment,
        download_name=attachment.original_filename,
    )


# GET /attachments/file/5?disposition=attachment
@bp.route("/file/<int:attachment_id>")
def attachment_file(attachment_id):
    attachment = db.get_or_404(Attachment, attachment_id)
    disposition = request.args.get("disposition", "inline").lower()
    return serve_attachment(attachment, as_attachment=disposition == "attachment")


@bp.route("/thumb/<int:attachment_id>")
def thumb(attachment_id):
    """The thumbnail, the full image when there is none, or a placeholder."""
    attachment = db.session.get(Attachment, attachment_id)
    if attachment is None or not (attachment.thumb_file and attachment.thumb_container):
        if attachment is not None and attachment.is_image:
            return redirect(url_for("attachments.attachment_file", attachment_id=attachment_id))
        return redirect(url_for("attachments.placeholder"))

    upload = get_storage(attachment.location).get_file(
        attachment.thumb_file, attachment.thumb_container
    )
    if upload is None:
        return redirect(url_for("attachments.placeholder"))
    data, mime_type = upload
    return send_file(io.BytesIO(data), mimetype=mime_type)


@bp.route("/placeholder")
def placeholder():
    return send_from_directory(os.path.join(current_app.static_folder, "images"), PLACEHOLDER)
