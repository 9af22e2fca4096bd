"""
Security utilities for input sanitization and validation
"""
import os
import re
import bleach
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

UUID_PATTERN = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$', re.IGNORECASE)

# RFC 5322 compliant email regex (simplified)
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)

DISPOSABLE_EMAIL_DOMAINS = ["tempmail.com", "throwaway.email", "mailinator.com"]


def sanitize_html(text: str, allowed_tags: Optional[list] = None) -> str:
    """
    Sanitize HTML input to prevent XSS attacks

    Args:
        text: Input text that may contain HTML
        allowed_tags: List of allowed HTML tags (default: none)

    Returns:
        Sanitized text
    """
    if allowed_tags is None:
        allowed_tags = []

    return bleach.clean(
        text,
        tags=allowed_tags,
        strip=True,
        strip_comments=True
    )


def sanitize_input(text: Optional[str], max_length: int = 1000) -> str:
    """
    Sanitize general text input (pet names, form fields)

    Args:
        text: Input text
        max_length: Maximum allowed length

    Returns:
        Sanitized text
    """
    if not text or not isinstance(text, str):
        return ""

    text = text[:max_length]
    text = sanitize_html(text)
    text = re.sub(r'javascript:', '', text, flags=re.IGNORECASE)
    text = re.sub(r'on\w+=', '', text, flags=re.IGNORECASE)

    # Remove control characters except newlines and tabs
    text = re.sub(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]', '', text)

    return text.strip()


def is_valid_email(email: Optional[str]) -> bool:
    """
    Strict server-side email validation used before checkout

    Args:
        email: Email address to validate

    Returns:
        True if valid, False otherwise
    """
    if not email or not isinstance(email, str):
        return False
    if len(email) > 254:
        return False
    if ".." in email:
        return False
    if not EMAIL_PATTERN.fullmatch(email):
        return False

    domain = email.split("@")[1].lower()
    if domain in DISPOSABLE_EMAIL_DOMAINS:
        return False

    return True


def is_valid_uuid(value: Optional[str]) -> bool:
    """Check that value is a canonical 36-character UUID string"""
    if not value or not isinstance(value, str):
        return False
    return bool(UUID_PATTERN.fullmatch(value))


def validate_image_magic_bytes(data: bytes) -> bool:
    """
    Validate that the payload really is a JPEG, PNG or WebP image
    by checking its leading bytes rather than the declared MIME type.
    """
    header = data[:12]
    if header[:3] == b'\xff\xd8\xff':
        return True
    if header[:8] == b'\x89PNG\r\n\x1a\n':
        return True
    if header[:4] == b'RIFF' and header[8:12] == b'WEBP':
        return True
    return False


def scan_upload(file_data: bytes, filename: str) -> Dict[str, Any]:
    """
    Basic security checks on an uploaded image

    Args:
        file_data: File content
        filename: Original filename

    Returns:
        Dictionary with scan results
    """
    result = {
        "is_safe": True,
        "threats_found": [],
    }

    suspicious_extensions = [
        '.exe', '.bat', '.cmd', '.com', '.pif', '.scr', '.vbs', '.js',
        '.jar', '.msi', '.app', '.deb', '.rpm', '.dmg', '.pkg', '.sh'
    ]
    file_ext = os.path.splitext((filename or "").lower())[1]
    if file_ext in suspicious_extensions:
        result["is_safe"] = False
        result["threats_found"].append(f"Suspicious file extension: {file_ext}")
        return result

    suspicious_patterns = [
        b'<script',
        b'<?php',
        b'eval(',
        b'base64_decode'
    ]
    lowered = file_data.lower()
    for pattern in suspicious_patterns:
        if pattern in lowered:
            result["is_safe"] = False
            result["threats_found"].append("Suspicious code pattern in image")
            return result

    return result


def sanitize_pet_description(text: Optional[str], max_length: int = 2000) -> str:
    """
    Clean a vision-model description so it can be stored in the portraits table.
    Drops emoji and control characters, collapses whitespace and truncates.
    """
    if not text:
        return ""

    text = re.sub(r"[\U0001F300-\U0001F9FF\u2600-\u26FF\u2700-\u27BF]", "", text)
    text = re.sub(r'[\x00-\x1F\x7F]', ' ', text)
    text = re.sub(r'\s+', ' ', text).strip()
    text = text[:max_length]
    return text.replace('"', "'")


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to prevent directory traversal attacks

    Args:
        filename: Original filename

    Returns:
        Sanitized filename
    """
    filename = os.path.basename(filename)
    filename = filename.replace('..', '')

    # Allow only alphanumeric, dots, hyphens, and underscores
    filename = re.sub(r'[^a-zA-Z0-9._-]', '_', filename)

    if len(filename) > 255:
        name, ext = os.path.splitext(filename)
        filename = name[:250] + ext

    return filename


def safe_parse_int(value: Any, default: int) -> int:
    """Parse an int from untrusted input, falling back to default"""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value == value and value not in (float("inf"), float("-inf")):
        return int(value)
    if isinstance(value, str):
        match = re.match(r'^\s*(-?\d+)', value)
        if match:
            return int(match.group(1))
    return default


def mask_sensitive_data(data: str, mask_char: str = "*", visible_chars: int = 4) -> str:
    """
    Mask sensitive data for logging/display

    Args:
        data: Sensitive data to mask
        mask_char: Character to use for masking
        visible_chars: Number of characters to leave visible at the end

    Returns:
        Masked string
    """
    if len(data) <= visible_chars:
        return mask_char * len(data)

    masked_length = len(data) - visible_chars
    return (mask_char * masked_length) + data[-visible_chars:]
