"""Storage for rendered document artifacts: local directory or Supabase Storage."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from config import require_supabase_storage, settings

logger = logging.getLogger(__name__)

UPLOAD_TIMEOUT_SECONDS = 20.0


class StorageError(RuntimeError):
    """Raised when an artifact could not be stored."""


def _object_path(user_id: str, document_id: str, extension: str) -> str:
    return f"{user_id}/{document_id}.{extension.lstrip('.')}"


def _store_local(object_path: str, content: bytes) -> str:
    destination = Path(settings.DOCUMENT_STORAGE_DIR) / object_path
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(content)
    except OSError as exc:
        raise StorageError(f"Could not write document file: {exc}") from exc
    return destination.resolve().as_uri()


async def _store_supabase(object_path: str, content: bytes, content_type: str) -> str:
    try:
        base_url, service_key = require_supabase_storage()
    except ValueError as exc:
        raise StorageError(str(exc)) from exc

    bucket = settings.DOCUMENT_STORAGE_BUCKET
    upload_url = f"{base_url}/storage/v1/object/{bucket}/{object_path}"
    headers = {
        "Authorization": f"Bearer {service_key}",
        "apikey": service_key,
        "Content-Type": content_type,
        "x-upsert": "true",
    }
    try:
        async with httpx.AsyncClient(timeout=UPLOAD_TIMEOUT_SECONDS) as client:
            response = await client.post(upload_url, content=content, headers=headers)
    except httpx.HTTPError as exc:
        raise StorageError(f"Supabase Storage request failed: {exc}") from exc
    if response.status_code >= 400:
        raise StorageError(f"Supabase Storage rejected upload ({response.status_code}): {response.text[:200]}")
    return f"{base_url}/storage/v1/object/public/{bucket}/{object_path}"


async def store_document(
    user_id: str,
    document_id: str,
    content: bytes,
    *,
    extension: str = "html",
    content_type: str = "text/html; charset=utf-8",
) -> str:
    """Persist an artifact and return the URL it can be fetched from."""
    object_path = _object_path(user_id, document_id, extension)
    backend = (settings.DOCUMENT_STORAGE_BACKEND or "local").strip().lower()
    if backend == "supabase":
        url = await _store_supabase(object_path, content, content_type)
    elif backend == "local":
        url = _store_local(object_path, content)
    else:
        raise StorageError(f"Unknown document storage backend: {backend}")
    logger.info("Stored document %s via %s (%s bytes)", document_id, backend, len(content))
    return url
