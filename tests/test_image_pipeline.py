import io

import pytest
from PIL import Image

from asset_store.enums.file_enums import ImageFormat
from asset_store.infra.imaging.image_pipeline import PillowImagePipeline, ResizeOptions


def encode(image: Image.Image, fmt: str, **kwargs) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def decode(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


@pytest.fixture
def pipeline() -> PillowImagePipeline:
    return PillowImagePipeline()


@pytest.fixture
def photo() -> bytes:
    return encode(Image.new("RGB", (1000, 800), (200, 120, 40)), "PNG")


class TestResize:
    def test_fits_inside_box_keeping_ratio(self, pipeline, photo):
        out = decode(pipeline.resize(photo, ResizeOptions(width=256, height=256)))

        assert out.format == "WEBP"
        assert out.width == 256
        assert out.height in (204, 205)

    def test_width_only_leaves_height_unbounded(self, pipeline, photo):
        out = decode(pipeline.resize(photo, ResizeOptions(width=320)))

        assert out.size == (320, 256)

    def test_never_upscales(self, pipeline, photo):
        out = decode(pipeline.resize(photo, ResizeOptions(width=2048)))

        assert out.size == (1000, 800)

    def test_applies_exif_orientation(self, pipeline):
        exif = Image.Exif()
        exif[0x0112] = 6  # 顺时针旋转 90 度
        source = encode(Image.new("RGB", (100, 50), "white"), "JPEG", exif=exif)

        out = decode(pipeline.resize(source, ResizeOptions(format=ImageFormat.PNG)))

        assert out.size == (50, 100)

    @pytest.mark.parametrize("fmt, pil_name", [
        (ImageFormat.PNG, "PNG"),
        (ImageFormat.WEBP, "WEBP"),
        (ImageFormat.JPEG, "JPEG"),
    ])
    def test_cmyk_source_is_converted(self, pipeline, fmt, pil_name):
        source = encode(Image.new("CMYK", (60, 40), (0, 50, 100, 0)), "JPEG")

        out = decode(pipeline.resize(source, ResizeOptions(width=30, format=fmt)))

        assert out.format == pil_name
        assert out.mode == "RGB"
        assert out.size == (30, 20)

    @pytest.mark.parametrize("mode", ["RGBA", "LA"])
    def test_alpha_source_to_jpeg_drops_alpha(self, pipeline, mode):
        source = encode(Image.new(mode, (40, 40)), "PNG")

        out = decode(pipeline.resize(source, ResizeOptions(width=20, format=ImageFormat.JPEG)))

        assert out.format == "JPEG"
        assert out.mode == "RGB"

    def test_transparent_palette_source_keeps_alpha_in_webp(self, pipeline):
        palette_image = Image.new("P", (40, 30), 0)
        palette_image.putpalette([0, 0, 0, 255, 0, 0])
        source = encode(palette_image, "PNG", transparency=0)

        out = decode(pipeline.resize(source, ResizeOptions(width=20, format=ImageFormat.WEBP)))

        assert out.format == "WEBP"
        assert out.mode == "RGBA"

    def test_png_keeps_supported_modes(self, pipeline):
        source = encode(Image.new("L", (40, 40), 128), "PNG")

        out = decode(pipeline.resize(source, ResizeOptions(width=20, format=ImageFormat.PNG)))

        assert out.mode == "L"


def test_read_metadata(pipeline, photo):
    meta = pipeline.read_metadata(photo)

    assert (meta.width, meta.height) == (1000, 800)
