"""Tests for slugs, identifiers, file names and folder references."""

from __future__ import annotations

import pytest

from imagesync.services.naming_service import (
    extension_for_mime,
    extract_folder_id,
    rewrite_extension,
    sanitize_file_name,
    sanitize_identifier,
    slugify,
)


class TestSlugify:
    def test_basic(self) -> None:
        assert slugify("Product Images") == "product-images"

    def test_unicode_normalized_to_ascii(self) -> None:
        assert slugify("\u00e9t\u00e9 photos") == "ete-photos"

    def test_special_chars_only_returns_untitled(self) -> None:
        assert slugify("!!!") == "untitled"

    def test_long_text_truncated_on_word_boundary(self) -> None:
        slug = slugify("gallery " * 20)
        assert len(slug) <= 80
        assert not slug.endswith("-")


class TestSanitizeIdentifier:
    def test_spaces_and_punctuation(self) -> None:
        assert sanitize_identifier("Hero Image (main)") == "hero_image__main_"

    def test_leading_digit_prefixed(self) -> None:
        assert sanitize_identifier("3D Render") == "_3d_render"

    def test_lowercased(self) -> None:
        assert sanitize_identifier("Table_12_Products") == "table_12_products"

    def test_empty_becomes_underscore(self) -> None:
        assert sanitize_identifier("") == "_"


class TestSanitizeFileName:
    def test_keeps_safe_names(self) -> None:
        assert sanitize_file_name("photo-01.jpg") == "photo-01.jpg"

    def test_replaces_unsafe_characters(self) -> None:
        assert sanitize_file_name("my photo (1).jpg") == "my_photo__1_.jpg"

    def test_strips_directories(self) -> None:
        assert sanitize_file_name("../../etc/passwd") == "passwd"
        assert sanitize_file_name("C:\\Users\\me\\pic.png") == "pic.png"

    def test_strips_leading_dots(self) -> None:
        assert sanitize_file_name(".hidden.png") == "hidden.png"

    def test_empty_falls_back(self) -> None:
        assert sanitize_file_name("") == "file"
        assert sanitize_file_name("...") == "file"

    def test_long_name_keeps_extension(self) -> None:
        name = sanitize_file_name("a" * 300 + ".jpeg")
        assert len(name) == 200
        assert name.endswith(".jpeg")


class TestExtensions:
    def test_known_mime_types(self) -> None:
        assert extension_for_mime("image/jpeg") == ".jpg"
        assert extension_for_mime("image/webp") == ".webp"
        assert extension_for_mime("image/png; charset=binary") == ".png"

    def test_rewrite_to_new_encoding(self) -> None:
        assert rewrite_extension("photo.png", "image/webp") == "photo.webp"

    def test_jpeg_alias_kept(self) -> None:
        assert rewrite_extension("photo.JPEG", "image/jpeg") == "photo.JPEG"

    def test_missing_extension_added(self) -> None:
        assert rewrite_extension("photo", "image/png") == "photo.png"

    def test_unknown_mime_leaves_name(self) -> None:
        assert rewrite_extension("photo.raw", "application/x-unknown-thing") == "photo.raw"


class TestExtractFolderId:
    @pytest.mark.parametrize(
        ("ref", "expected"),
        [
            ("https://drive.google.com/drive/folders/1AbC_dEf-GhIjK", "1AbC_dEf-GhIjK"),
            ("https://drive.google.com/drive/u/0/folders/1AbCdEfGhIjK?usp=sharing", "1AbCdEfGhIjK"),
            ("https://drive.google.com/open?id=1AbCdEfGhIjK", "1AbCdEfGhIjK"),
            ("1AbCdEfGhIjK", "1AbCdEfGhIjK"),
            ("  1AbCdEfGhIjK  ", "1AbCdEfGhIjK"),
        ],
    )
    def test_resolves(self, ref: str, expected: str) -> None:
        assert extract_folder_id(ref) == expected

    @pytest.mark.parametrize(
        "ref",
        [
            "",
            None,
            "short",
            "https://example.com/some/page",
            "https://drive.google.com/open?id=bad",
            "not a folder id at all",
        ],
    )
    def test_rejects(self, ref: str | None) -> None:
        assert extract_folder_id(ref) is None
