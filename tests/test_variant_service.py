import asyncio
from uuid import uuid4
from unittest.mock import AsyncMock, MagicMock

import pytest

from asset_store.core.exceptions import (
    InvalidStateException,
    NotFoundException,
    UnsupportedVariantException,
    UpstreamFailureException,
)
from asset_store.enums.file_enums import FileStatus
from asset_store.models._model_utils.datetime import utcnow
from asset_store.models.files.file_asset import FileAsset, merge_variants
from asset_store.infra.db.repository_factory_auto import RepositoryFactory
from asset_store.schemas.file.file_asset_schemas import FileVariant
from asset_store.services.file.variant_engine import VariantEngine
from asset_store.services.file.variant_service import VariantService


class TestEnsureVariant:
    @pytest.mark.asyncio
    async def test_generates_once_then_serves_recorded(self, variant_service, make_file, fake_pipeline, fake_blob):
        file = await make_file()

        first = await variant_service.ensure_variant(file.id, "thumb")
        second = await variant_service.ensure_variant(file.id, "thumb")

        assert first.key == second.key
        assert first.key.endswith(f"/{file.content_hash[:2]}/{file.content_hash}/thumb.webp")
        assert first.key.startswith("variants/")
        assert (first.width, first.height) == (256, 205)
        assert first.is_ready
        assert len(fake_pipeline.resize_calls) == 1
        assert fake_blob.objects[first.key][1] == "image/webp"

    @pytest.mark.asyncio
    async def test_never_upscales(self, variant_service, make_file):
        file = await make_file()

        variant = await variant_service.ensure_variant(file.id, "w2048")

        assert (variant.width, variant.height) == (1000, 800)

    @pytest.mark.asyncio
    async def test_regenerates_when_object_is_missing(self, variant_service, make_file, fake_pipeline, fake_blob):
        file = await make_file()
        variant = await variant_service.ensure_variant(file.id, "w320")
        del fake_blob.objects[variant.key]

        again = await variant_service.ensure_variant(file.id, "w320")

        assert again.key == variant.key
        assert again.key in fake_blob.objects
        assert len(fake_pipeline.resize_calls) == 2

    @pytest.mark.asyncio
    async def test_reuses_variant_of_identical_content(self, variant_service, make_file, fake_pipeline):
        first = await make_file(owner_id="u1")
        second = await make_file(owner_id="u2")
        original = await variant_service.ensure_variant(first.id, "thumb")

        reused = await variant_service.ensure_variant(second.id, "thumb")

        assert reused.key == original.key
        assert len(fake_pipeline.resize_calls) == 1
        assert await variant_service.is_variant_ready(second.id, "thumb")

    @pytest.mark.asyncio
    async def test_unsupported_mime_or_type(self, variant_service, make_file):
        pdf = await make_file(data=b"%PDF-1.7", mime="application/pdf")
        image = await make_file()

        with pytest.raises(UnsupportedVariantException):
            await variant_service.ensure_variant(pdf.id, "thumb")
        with pytest.raises(UnsupportedVariantException):
            await variant_service.ensure_variant(image.id, "w9999")

    @pytest.mark.asyncio
    async def test_pipeline_failure_is_upstream_failure(self, variant_service, make_file, fake_pipeline):
        file = await make_file()
        fake_pipeline.should_fail = True

        with pytest.raises(UpstreamFailureException):
            await variant_service.ensure_variant(file.id, "thumb")
        assert not await variant_service.is_variant_ready(file.id, "thumb")

    @pytest.mark.asyncio
    async def test_unknown_and_deleted_files(self, variant_service, make_file, file_repo):
        file = await make_file()
        await file_repo.update(file, {"status": FileStatus.DELETED})

        with pytest.raises(NotFoundException):
            await variant_service.ensure_variant(uuid4(), "thumb")
        with pytest.raises(InvalidStateException):
            await variant_service.ensure_variant(file.id, "thumb")


class TestCommitVariants:
    @pytest.mark.asyncio
    async def test_concurrent_writer_of_another_type_is_preserved(self, variant_service, make_file, monkeypatch):
        file = await make_file()
        repo = variant_service.file_repo
        write = repo.update_variants_if_version
        competitor = FileVariant(type="w320", key="variants/other/w320.webp", width=320, ready_at=utcnow())
        raced = []

        async def racing_write(file_id, expected_version, variants):
            # 第一次写入前，另一个写入者以同一版本号抢先提交
            if not raced:
                raced.append(True)
                assert await write(file_id, expected_version, FileAsset.dump_variants([competitor]))
            return await write(file_id, expected_version, variants)

        monkeypatch.setattr(repo, "update_variants_if_version", racing_write)

        await variant_service.ensure_variant(file.id, "thumb")

        stored = await repo.get_by_id(file.id, fresh=True)
        assert [v.type for v in stored.get_variants()] == ["w320", "thumb"]
        assert stored.version == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_retries(self, variant_service, make_file, monkeypatch, asset_settings):
        file = await make_file()
        always_stale = AsyncMock(return_value=False)
        monkeypatch.setattr(variant_service.file_repo, "update_variants_if_version", always_stale)
        logger = MagicMock()
        monkeypatch.setattr(variant_service, "logger", logger)

        with pytest.raises(UpstreamFailureException) as exc_info:
            await variant_service.ensure_variant(file.id, "thumb")

        assert always_stale.await_count == asset_settings.commit_retries + 1
        # 最后一次失败后不再等待，只有真正会重试的轮次才记录 retrying
        retry_logs = [c for c in logger.warning.call_args_list if "retrying" in c.args[0]]
        assert len(retry_logs) == asset_settings.commit_retries
        logger.error.assert_called_once()
        assert exc_info.value.extra["retries"] == asset_settings.commit_retries

    @pytest.mark.asyncio
    async def test_stale_expected_version_still_merges(self, variant_service, make_file):
        file = await make_file()
        thumb = FileVariant(type="thumb", key="k/thumb.webp", ready_at=utcnow())
        w320 = FileVariant(type="w320", key="k/w320.webp", ready_at=utcnow())
        await variant_service.commit_variants(file.id, 1, [thumb])

        stored = await variant_service.commit_variants(file.id, 1, [w320])

        assert {v.type for v in stored.get_variants()} == {"thumb", "w320"}
        assert stored.version == 3

    @pytest.mark.asyncio
    async def test_stale_expected_version_does_not_use_a_retry(self, variant_service, make_file, monkeypatch):
        file = await make_file()
        thumb = FileVariant(type="thumb", key="k/thumb.webp", ready_at=utcnow())
        await variant_service.commit_variants(file.id, 1, [thumb])
        write = AsyncMock(wraps=variant_service.file_repo.update_variants_if_version)
        monkeypatch.setattr(variant_service.file_repo, "update_variants_if_version", write)

        stored = await variant_service.commit_variants(
            file.id, 1, [FileVariant(type="w320", key="k/w320.webp", ready_at=utcnow())]
        )

        assert write.await_count == 1
        assert write.await_args.args[1] == 2
        assert stored.version == 3

    def test_merge_replaces_same_type_and_keeps_order(self):
        old_thumb = FileVariant(type="thumb", key="old")
        w320 = FileVariant(type="w320", key="w320")
        new_thumb = FileVariant(type="thumb", key="new")

        merged = merge_variants([old_thumb, w320], [new_thumb])

        assert [(v.type, v.key) for v in merged] == [("thumb", "new"), ("w320", "w320")]


class TestGenerateAll:
    @pytest.mark.asyncio
    async def test_generates_every_image_preset(self, variant_service, make_file, fake_pipeline):
        file = await make_file()

        variants = await variant_service.generate_all(file.id)

        assert [v.type for v in variants] == ["thumb", "w320", "w640", "w1280", "w2048"]
        assert len(fake_pipeline.resize_calls) == 5
        assert len(await variant_service.get_variants(file.id)) == 5

    @pytest.mark.asyncio
    async def test_copies_ready_variants_from_identical_content(self, variant_service, make_file, fake_pipeline):
        first = await make_file()
        await variant_service.generate_all(first.id)
        second = await make_file(owner_id="u2")

        copied = await variant_service.generate_all(second.id)

        assert len(copied) == 5
        assert len(fake_pipeline.resize_calls) == 5
        first_keys = {v.key for v in await variant_service.get_variants(first.id)}
        assert {v.key for v in copied} == first_keys

    @pytest.mark.asyncio
    async def test_placeholder_and_unknown_mime_produce_nothing(self, variant_service, make_file, fake_pipeline):
        video = await make_file(data=b"video", mime="video/mp4")
        text = await make_file(data=b"text", mime="text/plain")

        assert await variant_service.generate_all(video.id) == []
        assert await variant_service.generate_all(text.id) == []
        assert fake_pipeline.resize_calls == []

    @pytest.mark.asyncio
    async def test_failed_presets_are_skipped(self, variant_service, make_file, fake_blob):
        file = await make_file()
        fake_blob.fail("put")

        assert await variant_service.generate_all(file.id) == []


class TestVariantQueries:
    @pytest.mark.asyncio
    async def test_get_variants_returns_only_ready(self, variant_service, make_file):
        file = await make_file()
        pending = FileVariant(type="w640", key="k/w640.webp")
        ready = FileVariant(type="thumb", key="k/thumb.webp", ready_at=utcnow())
        await variant_service.commit_variants(file.id, file.version, [pending, ready])

        variants = await variant_service.get_variants(file.id)

        assert [v.type for v in variants] == ["thumb"]
        assert not await variant_service.is_variant_ready(file.id, "w640")
        assert await variant_service.is_variant_ready(file.id, "thumb")

    @pytest.mark.asyncio
    async def test_unknown_file(self, variant_service):
        assert not await variant_service.is_variant_ready(uuid4(), "thumb")
        with pytest.raises(NotFoundException):
            await variant_service.get_variants(uuid4())


class TestConcurrentWriters:
    @pytest.mark.asyncio
    async def test_two_sessions_keep_both_variants(
            self, variant_service, session_maker, make_file, blob_service, fake_pipeline, asset_settings
    ):
        file = await make_file()

        async with session_maker() as other_session:
            other_service = VariantService(
                RepositoryFactory(db=other_session, context={"user_id": "worker"}),
                blob_service,
                VariantEngine(fake_pipeline),
                asset_settings=asset_settings,
            )

            thumb, w320 = await asyncio.gather(
                variant_service.ensure_variant(file.id, "thumb"),
                other_service.ensure_variant(file.id, "w320"),
            )

            stored = await variant_service.file_repo.get_by_id(file.id, fresh=True)

        assert {v.type for v in stored.get_ready_variants()} == {"thumb", "w320"}
        assert {v.key for v in stored.get_variants()} == {thumb.key, w320.key}
        assert stored.version == 3
