import os
import tempfile
import unittest
from unittest.mock import patch

from PIL import Image, ImageOps

from factories import broken_png_bytes, image_bytes
from services.file_storage import LocalFileStorage
from services.image_pipeline import ImagePipeline, UploadedImage
from utils.errors import InvalidFormat, PayloadTooLarge


class ImagePipelineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.storage = LocalFileStorage(self.tmp.name, url_prefix="/uploads/warenannahme")
        self.pipeline = ImagePipeline(self.storage, max_dimension=1920, quality=85, max_bytes=50 * 1024 * 1024)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def stored_files(self):
        return sorted(os.listdir(self.tmp.name))

    def test_large_photo_is_resized_and_reencoded(self) -> None:
        upload = UploadedImage("rampe.jpeg", image_bytes(4000, 3000), "image/jpeg")
        stored = self.pipeline.process(upload)

        self.assertTrue(stored.compressed)
        self.assertTrue(stored.name.endswith(".jpg"))
        self.assertEqual(stored.original_name, "rampe.jpeg")
        # Raw upload is gone, only the re-encoded output remains
        self.assertEqual(self.stored_files(), [stored.name])
        with Image.open(self.storage.path(stored.name)) as image:
            self.assertEqual(image.format, "JPEG")
            self.assertEqual(image.size, (1920, 1440))
            self.assertTrue(image.info.get("progressive") or image.info.get("progression"))

    def test_portrait_photo_keeps_aspect_ratio(self) -> None:
        stored = self.pipeline.process(UploadedImage("hoch.jpg", image_bytes(1500, 3000), "image/jpeg"))
        with Image.open(self.storage.path(stored.name)) as image:
            self.assertEqual(image.size, (960, 1920))

    def test_small_photo_is_not_upscaled(self) -> None:
        stored = self.pipeline.process(UploadedImage("klein.png", image_bytes(800, 600, fmt="PNG"), "image/png"))
        with Image.open(self.storage.path(stored.name)) as image:
            self.assertEqual(image.size, (800, 600))
            self.assertEqual(image.format, "JPEG")

    def test_transparent_png_is_flattened_to_rgb(self) -> None:
        upload = UploadedImage("label.png", image_bytes(300, 200, fmt="PNG", mode="RGBA"), "image/png")
        stored = self.pipeline.process(upload)
        with Image.open(self.storage.path(stored.name)) as image:
            self.assertEqual(image.mode, "RGB")

    def test_rejects_unsupported_extension(self) -> None:
        with self.assertRaises(InvalidFormat):
            self.pipeline.process(UploadedImage("scan.bmp", image_bytes(10, 10, fmt="BMP"), "image/bmp"))
        self.assertEqual(self.stored_files(), [])

    def test_rejects_non_image_content_type(self) -> None:
        with self.assertRaises(InvalidFormat):
            self.pipeline.validate(UploadedImage("foto.jpg", b"%PDF-1.4", "application/pdf"))

    def test_rejects_empty_file(self) -> None:
        with self.assertRaises(InvalidFormat):
            self.pipeline.validate(UploadedImage("foto.jpg", b"", "image/jpeg"))

    def test_rejects_oversized_upload_before_writing(self) -> None:
        pipeline = ImagePipeline(self.storage, max_bytes=1024)
        with self.assertRaises(PayloadTooLarge):
            pipeline.process(UploadedImage("gross.jpg", image_bytes(400, 400), "image/jpeg"))
        self.assertEqual(self.stored_files(), [])

    def test_undecodable_image_falls_back_to_original(self) -> None:
        content = b"\xff\xd8 definitely not a jpeg"
        stored = self.pipeline.process(UploadedImage("kaputt.jpg", content, "image/jpeg"))

        self.assertFalse(stored.compressed)
        self.assertEqual(self.storage.get(stored.name), content)
        self.assertEqual(stored.size, len(content))
        # No temporary output left behind
        self.assertEqual(self.stored_files(), [stored.name])

    def test_broken_png_chunk_falls_back_to_original(self) -> None:
        content = broken_png_bytes(64, 64)
        stored = self.pipeline.process(UploadedImage("kaputt.png", content, "image/png"))

        self.assertEqual(self.stored_files(), [stored.name])
        if not stored.compressed:
            self.assertEqual(self.storage.get(stored.name), content)

    def test_any_decoder_error_falls_back_to_original(self) -> None:
        content = image_bytes(64, 64, fmt="PNG")
        with patch.object(ImageOps, "exif_transpose", side_effect=SyntaxError("broken PNG file")):
            stored = self.pipeline.process(UploadedImage("rampe.png", content, "image/png"))

        self.assertFalse(stored.compressed)
        self.assertEqual(self.storage.get(stored.name), content)
        self.assertEqual(self.stored_files(), [stored.name])

    def test_generated_names_do_not_collide(self) -> None:
        names = {LocalFileStorage.generate_name("a.jpg") for _ in range(200)}
        self.assertEqual(len(names), 200)


if __name__ == "__main__":
    unittest.main()
