"""
Marketplace — Image Hosting
Validates uploaded images and stores them on Cloudinary. Without Cloudinary
credentials images go to UPLOAD_DIR and are served by /api/uploads/{filename}.

Every hosted image is described by {"public_id", "url"}. Local images use a
public_id of the form "local:<filename>".
"""
import io, asyncio, uuid
from pathlib import Path
from fastapi import UploadFile, HTTPException
import cloudinary
import cloudinary.uploader

from marketplace.config import (
    USE_CLOUDINARY, CLOUDINARY_CLOUD_NAME, CLOUDINARY_API_KEY, CLOUDINARY_API_SECRET,
    CLOUDINARY_FOLDER, ALLOWED_IMAGE_TYPES, MAX_IMAGE_BYTES
)
from marketplace.db import save_uploaded_file, delete_uploaded_file

if USE_CLOUDINARY:
    cloudinary.config(cloud_name=CLOUDINARY_CLOUD_NAME, api_key=CLOUDINARY_API_KEY,
                      api_secret=CLOUDINARY_API_SECRET, secure=True)

LOCAL_PREFIX = "local:"
EXT_TYPES = {".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png",
             ".webp": "image/webp", ".gif": "image/gif"}
TYPE_EXTS = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}

# ============================================================
# VALIDATION
# ============================================================
async def read_image(upload: UploadFile) -> tuple:
    """Read an upload and return (content, content_type). 400 on bad type/size."""
    ct = (upload.content_type or "application/octet-stream").lower()
    ext = Path(upload.filename or "").suffix.lower()
    if ct == "application/octet-stream" and ext in EXT_TYPES:
        ct = EXT_TYPES[ext]
    if ct not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(400, "Only image files (jpeg, png, webp, gif) are allowed")
    content = await upload.read()
    if not content:
        raise HTTPException(400, "Uploaded image is empty")
    if len(content) > MAX_IMAGE_BYTES:
        raise HTTPException(400, f"Image exceeds the {MAX_IMAGE_BYTES // (1024 * 1024)} MB limit")
    return content, ct

# ============================================================
# UPLOAD
# ============================================================
def _cloudinary_upload(content: bytes, folder: str) -> dict:
    result = cloudinary.uploader.upload(io.BytesIO(content), folder=f"{CLOUDINARY_FOLDER}/{folder}",
                                        resource_type="image")
    return {"public_id": result["public_id"], "url": result["secure_url"]}

def _local_upload(content: bytes, content_type: str, folder: str) -> dict:
    filename = f"{folder}_{uuid.uuid4().hex}{TYPE_EXTS.get(content_type, '.img')}"
    save_uploaded_file(filename, content)
    return {"public_id": f"{LOCAL_PREFIX}{filename}", "url": f"/api/uploads/{filename}"}

async def upload_image(content: bytes, content_type: str, folder: str) -> dict:
    """Host one image. Raises 500 when the image host rejects it."""
    try:
        if USE_CLOUDINARY:
            hosted = await asyncio.to_thread(_cloudinary_upload, content, folder)
        else:
            hosted = _local_upload(content, content_type, folder)
    except Exception as e:
        print(f"[Media] Upload to {folder} failed: {e}")
        raise HTTPException(500, "Image upload failed")
    print(f"[Media] Uploaded {hosted['public_id']}")
    return hosted

async def upload_images(files: list, folder: str) -> tuple:
    """Host already-validated (content, content_type) pairs.
    Returns (successful, failed): failures are logged and skipped."""
    successful, failed = [], []
    for content, ct in files:
        try:
            successful.append(await upload_image(content, ct, folder))
        except HTTPException as e:
            failed.append(e.detail)
    if failed:
        print(f"[Media] {len(failed)} of {len(files)} uploads to {folder} failed")
    return successful, failed

# ============================================================
# DELETE / REPLACE
# ============================================================
def _delete_sync(public_id: str) -> bool:
    if public_id.startswith(LOCAL_PREFIX):
        return delete_uploaded_file(public_id[len(LOCAL_PREFIX):])
    if not USE_CLOUDINARY:
        return False
    result = cloudinary.uploader.destroy(public_id, resource_type="image")
    return result.get("result") == "ok"

async def delete_image(public_id: str) -> bool:
    """Best-effort delete; never raises."""
    if not public_id:
        return False
    try:
        deleted = await asyncio.to_thread(_delete_sync, public_id)
    except Exception as e:
        print(f"[Media] Failed to delete {public_id}: {e}")
        return False
    if not deleted:
        print(f"[Media] {public_id} was not deleted (already gone?)")
    return deleted

async def delete_images(public_ids: list) -> dict:
    deleted = 0
    for pid in [p for p in public_ids if p]:
        if await delete_image(pid):
            deleted += 1
    return {"deleted": deleted, "requested": len([p for p in public_ids if p])}

async def replace_image(old_public_id: str, content: bytes, content_type: str, folder: str) -> dict:
    """Upload the new image first, then drop the old one."""
    hosted = await upload_image(content, content_type, folder)
    if old_public_id:
        await delete_image(old_public_id)
    return hosted
