"""
Image processing and R2 upload utilities for logos, product images and receipts.
Handles validation, resizing, optimization, and cloud storage.

Storage is best effort: a failed upload or delete never fails the request
that triggered it. The failure is logged and handed back to the caller as a
warning so the response can tell the user the record was saved without it.
"""

import io
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import UploadFile, HTTPException
from PIL import Image, UnidentifiedImageError

from r2_client import StorageError, upload_object, delete_object, key_from_public_url

logger = logging.getLogger(__name__)

# Configuration
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}
ALLOWED_MIME_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/webp"}
MAX_FILE_SIZE = 5 * 1024 * 1024  # 5MB
MIN_DIMENSION = 100  # Minimum width or height in pixels
MAX_DIMENSION = 4000  # Maximum width or height in pixels
OPTIMIZED_SIZE = (1600, 1600)  # Receipts must stay legible

UPLOAD_FAILED_WARNING = "อัพโหลดรูปภาพไม่สำเร็จ ข้อมูลถูกบันทึกโดยไม่มีรูปภาพ"
DELETE_FAILED_WARNING = "ลบรูปภาพเดิมไม่สำเร็จ"


@dataclass
class ImageResult:
    """Outcome of a best-effort storage operation."""
    url: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    # Set by replace_image: the fresh upload and the image it supersedes
    uploaded_url: Optional[str] = None
    discard_url: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.warnings


def has_upload(file: Optional[UploadFile]) -> bool:
    """Browsers send an empty file part when the input was left blank."""
    return file is not None and bool(file.filename)


def validate_image_file(file: UploadFile) -> None:
    """
    Validate the filename and declared content type of an upload.

    Raises:
        HTTPException: If file is invalid
    """
    if not file.filename:
        raise HTTPException(status_code=400, detail="ไม่พบชื่อไฟล์")

    file_ext = "." + file.filename.lower().rsplit('.', 1)[-1]
    if file_ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="รองรับเฉพาะไฟล์ PNG, JPG และ WEBP")

    if file.content_type not in ALLOWED_MIME_TYPES:
        raise HTTPException(status_code=400, detail="ไฟล์ที่อัพโหลดต้องเป็นรูปภาพ")


def load_image(data: bytes) -> Image.Image:
    """
    Decode and sanity-check image bytes.

    Raises:
        HTTPException: If the bytes are too large, not an image, or out of bounds
    """
    if len(data) > MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail="ไฟล์รูปภาพต้องมีขนาดไม่เกิน 5MB")

    try:
        Image.open(io.BytesIO(data)).verify()
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise HTTPException(status_code=400, detail="ไฟล์รูปภาพไม่ถูกต้อง")

    width, height = image.size
    if min(width, height) < MIN_DIMENSION or max(width, height) > MAX_DIMENSION:
        raise HTTPException(
            status_code=400,
            detail=f"ขนาดรูปภาพต้องอยู่ระหว่าง {MIN_DIMENSION}-{MAX_DIMENSION} พิกเซล"
        )
    return image


def optimize_image(image: Image.Image, quality: int = 85) -> bytes:
    """
    Downscale and re-encode as progressive JPEG.

    Args:
        image: PIL Image object
        quality: JPEG quality (1-100, default 85)
    """
    if image.mode == 'RGBA':
        background = Image.new('RGB', image.size, (255, 255, 255))
        background.paste(image, mask=image.split()[3])  # 3 is the alpha channel
        image = background
    elif image.mode != 'RGB':
        image = image.convert('RGB')

    image.thumbnail(OPTIMIZED_SIZE, Image.Resampling.LANCZOS)

    buffer = io.BytesIO()
    image.save(buffer, format='JPEG', quality=quality, optimize=True, progressive=True)
    return buffer.getvalue()


async def read_image(file: UploadFile) -> bytes:
    """Validate an upload and return optimized JPEG bytes. Invalid input is a 400."""
    validate_image_file(file)
    data = await file.read()
    image = load_image(data)
    return optimize_image(image)


def build_object_key(company_id: int, folder: str) -> str:
    """companies/12/brands/1718000000_3f2a9c1b.jpg"""
    return f"companies/{company_id}/{folder}/{int(time.time())}_{uuid.uuid4().hex[:8]}.jpg"


async def store_image(file: UploadFile, company_id: int, folder: str) -> ImageResult:
    """
    Validate, optimize and upload an image.

    Validation errors propagate as HTTP 400 (the user sent a bad file).
    Storage errors are returned as a warning with ``url=None``.
    """
    data = await read_image(file)
    key = build_object_key(company_id, folder)
    try:
        url = await upload_object(key, data)
    except StorageError as e:
        logger.warning(f"Image upload skipped for company {company_id} ({folder}): {e}")
        return ImageResult(url=None, warnings=[UPLOAD_FAILED_WARNING])
    return ImageResult(url=url)


async def remove_image(url: Optional[str]) -> List[str]:
    """Delete a previously stored image. Returns warnings instead of raising."""
    key = key_from_public_url(url)
    if not key:
        return []
    try:
        await delete_object(key)
    except StorageError as e:
        logger.warning(f"Image delete skipped for {url}: {e}")
        return [DELETE_FAILED_WARNING]
    return []


async def replace_image(
    file: Optional[UploadFile],
    current_url: Optional[str],
    company_id: int,
    folder: str,
    remove: bool = False,
) -> ImageResult:
    """
    Handle the optional image part of an update form.

    - new file: upload it; the old one is discarded once the row is saved
    - remove flag without a file: clear the URL, discard the old one
    - neither: keep the current URL

    Nothing is deleted here. Call ``finish_replace`` after the commit, or
    ``undo_replace`` when the commit fails.
    """
    if has_upload(file):
        result = await store_image(file, company_id, folder)
        if result.url is None:
            return ImageResult(url=current_url, warnings=result.warnings)
        result.uploaded_url = result.url
        result.discard_url = current_url
        return result

    if remove and current_url:
        return ImageResult(url=None, discard_url=current_url)

    return ImageResult(url=current_url)


async def finish_replace(result: ImageResult) -> List[str]:
    """The row was committed: delete the image it no longer points at."""
    warnings = list(result.warnings)
    if result.discard_url:
        warnings.extend(await remove_image(result.discard_url))
    return warnings


async def undo_replace(result: ImageResult) -> None:
    """The row was rolled back: delete the new upload, the old image stays."""
    if result.uploaded_url:
        await remove_image(result.uploaded_url)
