# bookpress/lib/gcs_inventory.py
import os
import re
from datetime import timedelta
from typing import Any, Dict, Tuple

import google.auth
from google.auth import impersonated_credentials
from google.cloud import storage

from bookpress.config import config
from bookpress.logger import get_logger

log = get_logger(__name__)

_storage = None
def _client():
    global _storage
    if _storage is None:
        _storage = storage.Client()
    return _storage


class StorageNotConfigured(RuntimeError):
    pass


def _signing_creds():
    # Base creds from runtime (Cloud Run SA token)
    base_creds, _ = google.auth.default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
    # SA key files can sign directly
    if getattr(base_creds, "signer", None):
        return base_creds
    # Otherwise impersonate a service account that CAN sign
    target_sa = os.getenv("GCS_SIGNING_SERVICE_ACCOUNT") or getattr(base_creds, "service_account_email", None)
    if not target_sa or target_sa == "default":
        raise StorageNotConfigured("Cannot sign URLs: set GCS_SIGNING_SERVICE_ACCOUNT to the service account email.")
    return impersonated_credentials.Credentials(
        source_credentials=base_creds,
        target_principal=target_sa,
        target_scopes=[
            "https://www.googleapis.com/auth/devstorage.read_write",
            "https://www.googleapis.com/auth/cloud-platform",
        ],
    )


def upload_to_gcs(local_path: str, *, object_name: str, content_type: str = "application/octet-stream") -> Dict[str, Any]:
    """
    Upload a local file and return bucket/object/gs_uri plus a v4 signed GET URL.
    """
    if not config.gcs_bucket:
        raise StorageNotConfigured("GCS_BUCKET not configured")

    bucket = _client().bucket(config.gcs_bucket)
    blob = bucket.blob(object_name)
    blob.cache_control = "public, max-age=31536000"
    blob.upload_from_filename(local_path, content_type=content_type)

    signed_url = blob.generate_signed_url(
        version="v4",
        expiration=timedelta(seconds=config.signed_url_ttl),
        method="GET",
        response_disposition=f'inline; filename="{os.path.basename(local_path)}"',
        response_type=content_type,
        credentials=_signing_creds(),
    )
    log.debug(f"uploaded {local_path} -> gs://{config.gcs_bucket}/{object_name}")

    return {
        "bucket": config.gcs_bucket,
        "object": object_name,
        "gs_uri": f"gs://{config.gcs_bucket}/{object_name}",
        "signed_url": signed_url,
        "expires_in": config.signed_url_ttl,
        "content_type": content_type,
    }

_GS_RE = re.compile(r"^gs://([^/]+)/(.+)$")

def _parse_gs_uri(gs_uri: str) -> Tuple[str, str]:
    """
    Parse 'gs://bucket/key' -> (bucket, key)
    """
    m = _GS_RE.match(gs_uri)
    if not m:
        raise ValueError(f"Invalid gs:// URI: {gs_uri}")
    return m.group(1), m.group(2)

def download_gcs_object_to_bytes(gs_uri: str) -> bytes:
    bucket_name, object_name = _parse_gs_uri(gs_uri)
    blob = _client().bucket(bucket_name).blob(object_name)
    return blob.download_as_bytes()
