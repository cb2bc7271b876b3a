from typing import Optional

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from asset_store.config.config_schema import VariantPresetConfig
from asset_store.core.exceptions import UpstreamFailureException
from asset_store.infra.imaging.image_pipeline import ImagePipelineInterface, ResizeOptions
from asset_store.metrics.asset_metrics import upstream_failures
from asset_store.services._base_service import BaseService


class RenderedVariant(BaseModel):
    data: bytes
    width: int
    height: int
    content_type: str

    @property
    def size(self) -> int:
        return len(self.data)


class VariantEngine(BaseService):
    """
    把原始字节按预设转成变体字节。目前只有图片管线。
    """

    def __init__(self, pipeline: ImagePipelineInterface):
        super().__init__()
        self.pipeline = pipeline

    @staticmethod
    def supports(mime_type: Optional[str]) -> bool:
        return bool(mime_type) and mime_type.lower().startswith("image/")

    async def render(self, original: bytes, preset: VariantPresetConfig) -> RenderedVariant:
        options = ResizeOptions(
            width=preset.width,
            height=preset.height,
            fit="inside",
            quality=preset.quality,
            format=preset.format,
        )
        try:
            data = await run_in_threadpool(self.pipeline.resize, original, options)
            meta = await run_in_threadpool(self.pipeline.read_metadata, data)
        except Exception as e:
            # 图片损坏、格式不支持等都归为上游失败，不暴露 Pillow 的异常类型
            self.logger.error(f"Image pipeline failed for preset '{preset.type}': {e}")
            upstream_failures.labels("image_pipeline").inc()
            raise UpstreamFailureException(
                message=f"Image processing failed for variant '{preset.type}'.",
                extra={"variant_type": preset.type},
            ) from e

        return RenderedVariant(
            data=data,
            width=meta.width,
            height=meta.height,
            content_type=preset.format.content_type,
        )
