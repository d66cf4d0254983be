import asyncio

import pytest

from portfolio_cms.services.errors import InvalidType, TooLarge
from portfolio_cms.services.media_ingestion import (
    GALLERY_FOLDER,
    MediaIngestion,
    content_hash,
    public_id_from_url,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def run(coro):
    return asyncio.run(coro)


class TestUploadValidation:
    def test_rejects_non_image(self, media, media_host):
        with pytest.raises(InvalidType):
            run(media.upload(b"%PDF-1.7", "application/pdf"))
        assert media_host.uploads == []

    def test_rejects_missing_mime_type(self, media):
        with pytest.raises(InvalidType):
            run(media.upload(PNG_BYTES, None))

    def test_rejects_oversized_file(self, media_host):
        media = MediaIngestion(media_host, max_bytes=10)
        with pytest.raises(TooLarge) as exc:
            run(media.upload(PNG_BYTES, "image/png"))
        assert exc.value.status_code == 400
        assert media_host.uploads == []

    def test_file_at_limit_is_accepted(self, media_host):
        media = MediaIngestion(media_host, max_bytes=len(PNG_BYTES))
        result = run(media.upload(PNG_BYTES, "image/png"))
        assert result["publicId"]

    def test_check_upload_before_reading(self, media):
        media.check_upload("image/png", None)
        with pytest.raises(TooLarge):
            media.check_upload("image/png", media.max_bytes + 1)
        with pytest.raises(InvalidType):
            media.check_upload("text/plain", 1)


class TestUploadDedup:
    def test_upload_returns_asset_fields(self, media):
        result = run(media.upload(PNG_BYTES, "image/png", "Up4work-portfolio/gallery"))
        assert set(result) == {"url", "publicId", "width", "height", "format"}
        assert result["publicId"].startswith("Up4work-portfolio/gallery/")
        assert result["url"].startswith("https://res.cloudinary.com/")

    def test_same_bytes_same_folder_uploads_once(self, media, media_host):
        first = run(media.upload(PNG_BYTES, "image/png", "f"))
        second = run(media.upload(PNG_BYTES, "image/jpeg", "f"))

        assert first == second
        assert len(media_host.uploads) == 1

    def test_same_bytes_different_folder_uploads_twice(self, media, media_host):
        a = run(media.upload(PNG_BYTES, "image/png", "folder-a"))
        b = run(media.upload(PNG_BYTES, "image/png", "folder-b"))

        assert a["publicId"] != b["publicId"]
        assert len(media_host.uploads) == 2

    def test_different_bytes_get_distinct_random_names(self, media):
        a = run(media.upload(PNG_BYTES, "image/png", "f"))
        b = run(media.upload(PNG_BYTES + b"\x01", "image/png", "f"))
        assert a["publicId"] != b["publicId"]

    def test_hash_is_attached_to_upload(self, media, media_host):
        result = run(media.upload(PNG_BYTES, "image/png", "f"))
        assert media_host.assets[result["publicId"]]["hash"] == content_hash(PNG_BYTES)

    def test_default_folder(self, media):
        result = run(media.upload(PNG_BYTES, "image/png"))
        assert result["publicId"].startswith("Up4work-portfolio/")


class TestDeleteAndList:
    def test_delete_existing(self, media):
        uploaded = run(media.upload(PNG_BYTES, "image/png", "f"))
        assert run(media.delete(uploaded["publicId"])) is True

    def test_delete_missing(self, media):
        assert run(media.delete("f/nothing-here")) is False

    def test_list_newest_first_with_variants(self, media):
        older = run(media.upload(PNG_BYTES, "image/png", GALLERY_FOLDER))
        newer = run(media.upload(PNG_BYTES + b"x", "image/png", GALLERY_FOLDER))
        run(media.upload(PNG_BYTES + b"y", "image/png", "elsewhere"))

        items = run(media.list())

        assert [i["id"] for i in items] == [newer["publicId"], older["publicId"]]
        item = items[0]
        assert item["thumbnail"] == (
            f"https://res.cloudinary.com/demo/image/upload/w_300,h_300,c_fill,q_auto,f_auto/{newer['publicId']}"
        )
        assert "w_800,c_limit" in item["medium"]
        assert "w_1920,c_limit" in item["large"]
        assert item["createdAt"]

    def test_list_empty_folder(self, media):
        assert run(media.list("nothing")) == []


class TestPublicIdFromUrl:
    @pytest.mark.parametrize(
        "url, expected",
        [
            (
                "https://res.cloudinary.com/demo/image/upload/v1712345678/Up4work-portfolio/abc.jpg",
                "Up4work-portfolio/abc",
            ),
            (
                "https://res.cloudinary.com/demo/image/upload/w_300/v17/a/b/c.webp?x=1",
                "a/b/c",
            ),
            ("https://example.com/image.png", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extraction(self, url, expected):
        assert public_id_from_url(url) == expected
