from io import BytesIO

import httpx
import pytest
import respx
from PIL import Image

from dupefinder.errors import ImagePipelineError
from dupefinder.logic.images import ImagePipeline, encode_image, sanitize_key

SOURCE = "https://cdn.brand.example/shape-tape.png"


def image_bytes(mode="RGB", fmt="PNG", color=(200, 120, 100)):
    buffer = BytesIO()
    Image.new(mode, (8, 8), color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeStorage:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    async def upload(self, key, data, content_type):
        if self.fail:
            raise ImagePipelineError("Upload failed")
        self.uploads.append((key, data, content_type))
        return f"https://storage.example/product-images/{key}"


class BrokenUpscaler:
    async def upscale(self, image):
        raise httpx.ConnectError("upscaler unreachable")


class ReplacingSegmenter:
    def __init__(self, output):
        self.output = output

    async def remove_background(self, image):
        return self.output


def test_sanitize_key():
    assert sanitize_key("tarte-shape-tape/../x y") == "tarte-shape-tape____x_y"


def test_encode_image_picks_format_by_transparency():
    opaque = encode_image(image_bytes())
    assert (opaque.content_type, opaque.extension) == ("image/jpeg", "jpg")
    transparent = encode_image(image_bytes(mode="RGBA", color=(0, 0, 0, 0)))
    assert (transparent.content_type, transparent.extension) == ("image/png", "png")
    # An alpha channel alone is not transparency.
    solid_rgba = encode_image(image_bytes(mode="RGBA", color=(10, 20, 30, 255)))
    assert solid_rgba.extension == "jpg"


def test_encode_image_rejects_garbage():
    with pytest.raises(ImagePipelineError):
        encode_image(b"<html>not an image</html>")


@pytest.mark.asyncio
async def test_opaque_image_is_uploaded_as_jpeg():
    storage = FakeStorage()
    async with respx.mock(assert_all_called=True) as router:
        router.get(SOURCE).mock(
            return_value=httpx.Response(200, content=image_bytes(), headers={"content-type": "image/png"})
        )
        async with httpx.AsyncClient() as session:
            pipeline = ImagePipeline(storage, attempts=1, session=session)
            url = await pipeline.process(SOURCE, "tarte-shape-tape-concealer")
    assert url == "https://storage.example/product-images/tarte-shape-tape-concealer.jpg"
    [(key, data, content_type)] = storage.uploads
    assert content_type == "image/jpeg"
    assert Image.open(BytesIO(data)).format == "JPEG"


@pytest.mark.asyncio
async def test_failed_stage_keeps_previous_bytes_and_segmented_png_is_kept():
    storage = FakeStorage()
    cutout = image_bytes(mode="RGBA", color=(0, 0, 0, 0))
    async with respx.mock() as router:
        router.get(SOURCE).mock(
            return_value=httpx.Response(200, content=image_bytes(), headers={"content-type": "image/png"})
        )
        async with httpx.AsyncClient() as session:
            pipeline = ImagePipeline(
                storage, upscaler=BrokenUpscaler(), segmenter=ReplacingSegmenter(cutout), attempts=1, session=session
            )
            url = await pipeline.process(SOURCE, "elf-camo")
    assert url.endswith("/elf-camo.png")
    assert storage.uploads[0][2] == "image/png"


@pytest.mark.asyncio
async def test_non_image_response_is_skipped():
    storage = FakeStorage()
    async with respx.mock() as router:
        router.get(SOURCE).mock(
            return_value=httpx.Response(200, text="<html></html>", headers={"content-type": "text/html"})
        )
        async with httpx.AsyncClient() as session:
            pipeline = ImagePipeline(storage, attempts=1, session=session)
            assert await pipeline.process(SOURCE, "key") is None
    assert storage.uploads == []


@pytest.mark.asyncio
async def test_undecodable_bytes_are_skipped():
    storage = FakeStorage()
    async with respx.mock() as router:
        router.get(SOURCE).mock(
            return_value=httpx.Response(200, content=b"\x89PNG broken", headers={"content-type": "image/png"})
        )
        async with httpx.AsyncClient() as session:
            pipeline = ImagePipeline(storage, attempts=1, session=session)
            assert await pipeline.process(SOURCE, "key") is None
    assert storage.uploads == []


@pytest.mark.asyncio
async def test_upload_failure_returns_none():
    async with respx.mock() as router:
        router.get(SOURCE).mock(
            return_value=httpx.Response(200, content=image_bytes(), headers={"content-type": "image/png"})
        )
        async with httpx.AsyncClient() as session:
            pipeline = ImagePipeline(FakeStorage(fail=True), attempts=1, session=session)
            assert await pipeline.process(SOURCE, "key") is None


@pytest.mark.asyncio
async def test_process_first_falls_back_to_next_candidate():
    storage = FakeStorage()
    missing = "https://cdn.brand.example/missing.jpg"
    async with respx.mock() as router:
        broken = router.get(missing).mock(return_value=httpx.Response(404))
        router.get(SOURCE).mock(
            return_value=httpx.Response(200, content=image_bytes(), headers={"content-type": "image/png"})
        )
        async with httpx.AsyncClient() as session:
            pipeline = ImagePipeline(storage, attempts=1, session=session)
            url = await pipeline.process_first([missing, "", missing, SOURCE], "fit-me")
    assert url.endswith("/fit-me.jpg")
    assert broken.call_count == 1
