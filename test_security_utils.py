"""
Unit tests for input sanitization and validation helpers
"""

import pytest

from security_utils import (
    is_valid_email,
    is_valid_uuid,
    mask_sensitive_data,
    safe_parse_int,
    sanitize_filename,
    sanitize_input,
    sanitize_pet_description,
    scan_upload,
    validate_image_magic_bytes,
)


class TestEmail:
    @pytest.mark.parametrize("email", [
        "owner@example.com",
        "first.last+pets@sub.example.co.uk",
    ])
    def test_valid(self, email):
        assert is_valid_email(email) is True

    @pytest.mark.parametrize("email", [
        None,
        "",
        "owner",
        "owner@",
        "owner..name@example.com",
        "owner@mailinator.com",
        "a" * 250 + "@example.com",
        "owner@example.com\n",
    ])
    def test_invalid(self, email):
        assert is_valid_email(email) is False


class TestUuid:
    def test_valid(self):
        assert is_valid_uuid("3f2b8c1e-9a4d-4e6f-8b2a-1c3d5e7f9a0b") is True

    @pytest.mark.parametrize("value", [
        None,
        "",
        "not-a-uuid",
        "3f2b8c1e9a4d4e6f8b2a1c3d5e7f9a0b",
        "../etc/passwd",
        "3f2b8c1e-9a4d-4e6f-8b2a-1c3d5e7f9a0b\n",
    ])
    def test_invalid(self, value):
        assert is_valid_uuid(value) is False


class TestMagicBytes:
    def test_jpeg_png_webp(self):
        assert validate_image_magic_bytes(b"\xff\xd8\xff\xe0rest")
        assert validate_image_magic_bytes(b"\x89PNG\r\n\x1a\nrest")
        assert validate_image_magic_bytes(b"RIFF\x00\x00\x00\x00WEBPVP8 ")

    def test_rejects_other_content(self):
        assert not validate_image_magic_bytes(b"GIF89a")
        assert not validate_image_magic_bytes(b"<html>")
        assert not validate_image_magic_bytes(b"")


class TestScanUpload:
    def test_clean_image(self):
        assert scan_upload(b"\xff\xd8\xff\xe0" + b"\x00" * 32, "rex.jpg")["is_safe"] is True

    def test_embedded_script(self):
        result = scan_upload(b"\xff\xd8\xff\xe0<SCRIPT>alert(1)</script>", "rex.jpg")
        assert result["is_safe"] is False
        assert result["threats_found"]

    def test_executable_extension(self):
        assert scan_upload(b"\xff\xd8\xff", "rex.exe")["is_safe"] is False


class TestSanitize:
    def test_sanitize_input_strips_html(self):
        assert sanitize_input("<b>Rex</b> <i>the Great</i>") == "Rex the Great"

    def test_sanitize_input_truncates(self):
        assert sanitize_input("a" * 100, max_length=10) == "a" * 10

    def test_sanitize_input_empty(self):
        assert sanitize_input(None) == ""

    def test_pet_description_cleanup(self):
        text = '[DOG] 🐶 Golden\x00 retriever\n\n  with "soft" ears'
        assert sanitize_pet_description(text) == "[DOG] Golden retriever with 'soft' ears"

    def test_pet_description_truncated(self):
        assert len(sanitize_pet_description("x" * 5000, 2000)) == 2000

    def test_filename(self):
        assert sanitize_filename("../../etc/passwd") == "passwd"
        assert sanitize_filename("my pet.png") == "my_pet.png"


def test_safe_parse_int():
    assert safe_parse_int("7", 0) == 7
    assert safe_parse_int(3.9, 0) == 3
    assert safe_parse_int(None, 5) == 5
    assert safe_parse_int(True, 0) == 0
    assert safe_parse_int("abc", 1) == 1


def test_mask_sensitive_data():
    assert mask_sensitive_data("owner@example.com") == "*" * 13 + ".com"
    assert mask_sensitive_data("abc") == "***"
