"""
Factory Standards Build Tracker
Storage Service.

Uploaded files live under UPLOAD_FOLDER and are served back from
UPLOAD_URL_PREFIX. Object keys follow a fixed layout:

    guitars/<guitar_id>/<stage_id>/<ts>_<name>     build photos
    guitars/<temp_id>/reference/<ts>_<name>        reference images
    invoices/<client_uid>/<ts>_<name>              invoice PDFs / receipts
    runs/<run_id>/thumbnail/<ts>_<name>            run thumbnails
    branding/<asset_type>/<ts>_<name>              logos, favicons

Links pasted from elsewhere (Google Drive etc.) are stored as-is and
never deleted by us.
"""

import logging
import os
import re
import time

from flask import current_app
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".heic"}
ALLOWED_DOCUMENT_EXTENSIONS = {".pdf", ".jpg", ".jpeg", ".png"}
BRANDING_ASSET_TYPES = {"logo", "favicon", "email_logo"}

_DRIVE_FILE_RE = re.compile(r"/file/d/([a-zA-Z0-9_-]+)")
_DRIVE_OPEN_RE = re.compile(r"[?&]id=([a-zA-Z0-9_-]+)")


class StorageError(Exception):
    pass


# ── Object keys ──────────────────────────────────────────────────────────────

def _stamped(filename):
    name = secure_filename(filename or "") or "upload"
    return f"{int(time.time() * 1000)}_{name}"


def guitar_photo_key(guitar_id, stage_id, filename):
    return f"guitars/{guitar_id}/{stage_id}/{_stamped(filename)}"


def draft_prefix(uid):
    """Folder prefix for reference images uploaded before their guitar exists."""
    return f"draft-{uid}"


def reference_image_key(filename, temp_id="temp"):
    return f"guitars/{temp_id}/reference/{_stamped(filename)}"


def invoice_file_key(client_uid, filename):
    return f"invoices/{client_uid}/{_stamped(filename)}"


def run_thumbnail_key(run_id, filename):
    return f"runs/{run_id}/thumbnail/{_stamped(filename)}"


def branding_asset_key(asset_type, filename):
    if asset_type not in BRANDING_ASSET_TYPES:
        raise StorageError(f"asset_type must be one of: {', '.join(sorted(BRANDING_ASSET_TYPES))}")
    return f"branding/{asset_type}/{_stamped(filename)}"


# ── Filesystem ───────────────────────────────────────────────────────────────

def upload_root():
    return current_app.config["UPLOAD_FOLDER"]


def url_for_key(key):
    return f"{current_app.config.get('UPLOAD_URL_PREFIX', '/uploads/')}{key}"


def key_for_url(url):
    """Object key of an owned URL, or None for external links."""
    prefix = current_app.config.get("UPLOAD_URL_PREFIX", "/uploads/")
    if not url or not url.startswith(prefix):
        return None
    key = url[len(prefix):]
    if ".." in key.split("/"):
        return None
    return key


def is_owned_url(url):
    return key_for_url(url) is not None


def is_external_link(url):
    return bool(url) and not is_owned_url(url) and url.startswith(("http://", "https://"))


def save_upload(file_storage, key, allowed_extensions=ALLOWED_IMAGE_EXTENSIONS):
    """
    Write a werkzeug FileStorage under ``key`` and return its public URL.

    Raises:
        StorageError: missing file or a disallowed extension.
    """
    if file_storage is None or not file_storage.filename:
        raise StorageError("No file provided")
    extension = os.path.splitext(file_storage.filename)[1].lower()
    if allowed_extensions and extension not in allowed_extensions:
        raise StorageError(f"File type {extension or '(none)'} is not allowed")

    dest_path = os.path.join(upload_root(), *key.split("/"))
    os.makedirs(os.path.dirname(dest_path), exist_ok=True)
    file_storage.stream.seek(0)
    file_storage.save(dest_path)
    logger.info("Stored upload key=%s", key)
    return url_for_key(key)


def delete_owned(url):
    """
    Best-effort delete of a file we own.

    External links and files that are already gone are ignored; an OS
    error is logged and reported as False so the caller's write still
    goes through.
    """
    key = key_for_url(url)
    if key is None:
        return False
    path = os.path.join(upload_root(), *key.split("/"))
    if not os.path.exists(path):
        return False
    try:
        os.remove(path)
    except OSError:
        logger.warning("Could not delete stored file key=%s", key, exc_info=True)
        return False
    return True


# ── External links ───────────────────────────────────────────────────────────

def is_google_drive_link(url):
    return "drive.google.com" in (url or "")


def convert_google_drive_link(link):
    """
    Turn a Drive share link into a direct image URL.

    Handles ``/file/d/<id>/view`` and ``open?id=<id>``; direct ``/uc``
    links and unrecognised formats come back unchanged.
    """
    if "drive.google.com/uc" in link:
        return link
    match = _DRIVE_FILE_RE.search(link) or _DRIVE_OPEN_RE.search(link)
    if match:
        return f"https://drive.google.com/uc?export=view&id={match.group(1)}"
    return link


def normalize_image_link(url):
    url = (url or "").strip()
    if not url:
        raise StorageError("Image URL is required")
    if is_google_drive_link(url):
        return convert_google_drive_link(url)
    return url
