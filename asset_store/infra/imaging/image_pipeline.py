import io
from abc import ABC, abstractmethod
from typing import Literal, Optional

from PIL import Image, ImageOps
from pydantic import BaseModel, Field

from asset_store.enums.file_enums import ImageFormat

# Pillow 的保存格式名
PIL_FORMATS = {
    ImageFormat.WEBP: "WEBP",
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
}

# 各目标格式可以直接写出的像素模式，其余模式先转换
SAVABLE_MODES = {
    ImageFormat.JPEG: {"RGB", "L"},
    ImageFormat.PNG: {"1", "L", "LA", "P", "RGB", "RGBA", "I", "I;16"},
    ImageFormat.WEBP: {"RGB", "RGBA"},
}


class ResizeOptions(BaseModel):
    width: Optional[int] = Field(None, gt=0)
    height: Optional[int] = Field(None, gt=0)
    fit: Literal["inside"] = "inside"
    quality: int = Field(82, ge=1, le=100)
    format: ImageFormat = ImageFormat.WEBP


class ImageMetadata(BaseModel):
    width: int
    height: int


class ImagePipelineInterface(ABC):
    """
    图片处理能力的抽象。实现方是阻塞的，由 VariantEngine 放进线程池调用。
    """

    @abstractmethod
    def resize(self, data: bytes, options: ResizeOptions) -> bytes:
        """按 fit=inside 缩放（保持比例、不放大）并编码为目标格式。"""
        pass

    @abstractmethod
    def read_metadata(self, data: bytes) -> ImageMetadata:
        pass


class PillowImagePipeline(ImagePipelineInterface):

    def resize(self, data: bytes, options: ResizeOptions) -> bytes:
        with Image.open(io.BytesIO(data)) as source:
            # 按 EXIF 方向摆正
            image = ImageOps.exif_transpose(source)

            # thumbnail 保持宽高比且不会放大；缺省的一边不做限制
            bound = (options.width or image.width, options.height or image.height)
            image.thumbnail(bound, Image.Resampling.LANCZOS)

            image = self._to_savable_mode(image, options.format)

            out = io.BytesIO()
            save_kwargs = {"quality": options.quality}
            if options.format == ImageFormat.PNG:
                save_kwargs = {"optimize": True}
            image.save(out, format=PIL_FORMATS[options.format], **save_kwargs)
            return out.getvalue()

    def read_metadata(self, data: bytes) -> ImageMetadata:
        with Image.open(io.BytesIO(data)) as image:
            return ImageMetadata(width=image.width, height=image.height)

    @staticmethod
    def _to_savable_mode(image: Image.Image, fmt: ImageFormat) -> Image.Image:
        """CMYK、带透明度的调色板图等模式不能直接写成所有目标格式，先转换到目标格式可写的模式。"""
        if image.mode in SAVABLE_MODES[fmt]:
            return image
        # JPEG 没有透明通道
        if fmt != ImageFormat.JPEG and _has_alpha(image):
            return image.convert("RGBA")
        return image.convert("RGB")


def _has_alpha(image: Image.Image) -> bool:
    if image.mode in ("RGBA", "LA", "PA", "La", "RGBa"):
        return True
    return image.mode == "P" and "transparency" in image.info
