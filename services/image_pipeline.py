"""
Image intake for goods-receipt photos: format and size policy, storage of the raw
upload, and re-encoding into a bounded progressive JPEG.
"""
from dataclasses import dataclass
from PIL import Image, ImageOps
from pillow_heif import register_heif_opener
from typing import Optional
from config import settings
from services.file_storage import LocalFileStorage
from utils.errors import InvalidFormat, PayloadTooLarge
import logging
import os
import threading

logger = logging.getLogger(__name__)

register_heif_opener()

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".heic", ".heif"}
ALLOWED_CONTENT_TYPES = {"jpeg", "jpg", "png", "gif", "heic", "heif"}


class ImageProcessingError(Exception):
    pass


@dataclass
class UploadedImage:
    filename: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class StoredImage:
    name: str
    original_name: str
    size: int
    compressed: bool


class ImagePipeline:
    def __init__(
        self,
        storage: LocalFileStorage,
        max_dimension: int = settings.image_max_dimension,
        quality: int = settings.image_jpeg_quality,
        max_bytes: int = settings.max_upload_bytes,
        max_concurrent: int = settings.max_concurrent_compressions,
    ):
        self.storage = storage
        self.max_dimension = max_dimension
        self.quality = quality
        self.max_bytes = max_bytes
        # Compression is CPU bound; keep it from starving the request worker threads
        self._slots = threading.BoundedSemaphore(max(1, max_concurrent))

    def validate(self, upload: UploadedImage):
        if upload.size > self.max_bytes:
            raise PayloadTooLarge(
                f"File {upload.filename} exceeds maximum allowed size of {self.max_bytes // (1024 * 1024)}MB"
            )
        extension = os.path.splitext(upload.filename or "")[1].lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise InvalidFormat(f"File type not allowed: {upload.filename}")
        if upload.content_type:
            main_type, _, sub_type = upload.content_type.lower().partition("/")
            if main_type != "image" or sub_type not in ALLOWED_CONTENT_TYPES:
                raise InvalidFormat(f"Content type not allowed: {upload.content_type}")
        if upload.size == 0:
            raise InvalidFormat(f"File {upload.filename} is empty")

    def save_original(self, upload: UploadedImage) -> str:
        name = self.storage.generate_name(upload.filename)
        self.storage.put(name, upload.content)
        return name

    def compress(self, input_name: str, original_filename: str) -> str:
        """Re-encode a stored upload; the original is removed only after the output is in place"""
        output_name = self.storage.generate_name(original_filename, extension=".jpg")
        temp_path = self.storage.temp_path(output_name)
        try:
            with self._slots:
                with Image.open(self.storage.path(input_name)) as source:
                    image = ImageOps.exif_transpose(source)
                    image = _flatten(image)
                    # thumbnail keeps the aspect ratio and never enlarges
                    image.thumbnail((self.max_dimension, self.max_dimension), Image.LANCZOS)
                    image.save(temp_path, format="JPEG", quality=self.quality, progressive=True, optimize=True)
            os.replace(temp_path, self.storage.path(output_name))
        except Exception as e:
            # Decoders raise more than OSError on broken input (SyntaxError, struct.error, ...)
            temp_path.unlink(missing_ok=True)
            raise ImageProcessingError(f"Could not compress {original_filename}: {e}") from e

        self.storage.delete(input_name)
        logger.info(f"Image compressed: {input_name} -> {output_name}")
        return output_name

    def finalize(self, input_name: str, upload: UploadedImage) -> StoredImage:
        """Compress a stored upload, keeping the untouched original when compression fails"""
        try:
            name = self.compress(input_name, upload.filename)
            compressed = True
        except ImageProcessingError as e:
            logger.warning(f"{e}; keeping original upload {input_name}")
            name = input_name
            compressed = False
        return StoredImage(
            name=name,
            original_name=upload.filename,
            size=self.storage.size(name),
            compressed=compressed,
        )

    def process(self, upload: UploadedImage) -> StoredImage:
        self.validate(upload)
        input_name = self.save_original(upload)
        return self.finalize(input_name, upload)


def _flatten(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        image = image.convert("RGBA")
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.getchannel("A"))
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image
