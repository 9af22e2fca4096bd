"""
Image processing utilities
Shared functions for preview watermarking, overlays and compositing
"""

import logging
import random
import requests
from io import BytesIO
from PIL import Image as PILImage, ImageDraw, ImageFont
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

WATERMARK_TEXT = "LUMEPET – PREVIEW ONLY"

FONT_PATHS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSerif-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/System/Library/Fonts/Supplemental/Georgia.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSerif-Regular.ttf",
]

RAINBOW_BRIDGE_QUOTES = [
    "Where there is love, there is never truly goodbye.",
    "Your pawprints may fade from the earth, but they shine forever at the Rainbow Bridge.",
    "Until we meet again at the Bridge, run free, sweet soul.",
    "The Rainbow Bridge is not the end, just a place where love waits.",
    "Every pet who crosses the Bridge carries a piece of our heart with them.",
    "What we shared cannot be lost; it just waits for us in the light.",
    "They walk beside us for a while, but stay in our hearts forever.",
    "Some angels have wings. Some have fur and wait for us at the Bridge.",
    "The hardest part of having a pet is saying goodbye. The most beautiful part is knowing love continues at the Bridge.",
    "One day, the love you shared will guide you back to each other at the Rainbow Bridge.",
]

GOLD = (212, 175, 55)


def detect_image_mime_type(image_data: bytes) -> str:
    """Detect MIME type from image bytes using PIL"""
    try:
        image = PILImage.open(BytesIO(image_data))
        format_to_mime = {
            'PNG': 'image/png',
            'JPEG': 'image/jpeg',
            'JPG': 'image/jpeg',
            'GIF': 'image/gif',
            'WEBP': 'image/webp',
            'BMP': 'image/bmp',
            'TIFF': 'image/tiff'
        }
        return format_to_mime.get(image.format, 'image/jpeg')
    except Exception as e:
        logger.warning(f"Could not detect image format, defaulting to image/jpeg: {e}")
        return "image/jpeg"


def download_image_from_url(url: str) -> bytes:
    """Download image from URL and return image data"""
    try:
        response = requests.get(url, timeout=60)
        response.raise_for_status()
        return response.content
    except requests.exceptions.RequestException as e:
        raise Exception(f"Failed to download image from URL {url[:50]}...: {e}")


def _load_font(size: int):
    for path in FONT_PATHS:
        try:
            return ImageFont.truetype(path, size)
        except (OSError, IOError):
            continue
    return ImageFont.load_default(size=size)


def _flatten_to_rgb(image: PILImage.Image) -> PILImage.Image:
    if image.mode in ('RGBA', 'LA', 'P'):
        # White background for transparent images
        background = PILImage.new('RGB', image.size, (255, 255, 255))
        if image.mode == 'P':
            image = image.convert('RGBA')
        background.paste(image, mask=image.split()[-1])
        return background
    if image.mode != 'RGB':
        return image.convert('RGB')
    return image


def to_png_bytes(image: PILImage.Image) -> bytes:
    output_buffer = BytesIO()
    image.save(output_buffer, format='PNG', optimize=True)
    return output_buffer.getvalue()


def prepare_for_vision(image_data: bytes, max_side: int = 1024, quality: int = 95) -> bytes:
    """Fit the photo inside max_side x max_side (never enlarging) and re-encode as JPEG"""
    image = PILImage.open(BytesIO(image_data))
    image = _flatten_to_rgb(image)
    image.thumbnail((max_side, max_side), PILImage.LANCZOS)

    output_buffer = BytesIO()
    image.save(output_buffer, format='JPEG', quality=quality)
    return output_buffer.getvalue()


def compress_image(image_data: bytes, max_dimension: int = 2000, quality: int = 85) -> bytes:
    """Convert and compress an image to JPG, limiting the longest side to max_dimension"""
    try:
        image = PILImage.open(BytesIO(image_data))
        original_size_info = f"{image.width}x{image.height}"
        image = _flatten_to_rgb(image)
        image.thumbnail((max_dimension, max_dimension), PILImage.LANCZOS)

        output_buffer = BytesIO()
        image.save(output_buffer, format='JPEG', quality=quality, optimize=True)
        optimized_data = output_buffer.getvalue()

        original_size = len(image_data)
        optimized_size = len(optimized_data)
        compression_ratio = (1 - optimized_size / original_size) * 100
        logger.info(f"Image compressed ({original_size_info}): {original_size:,} bytes → {optimized_size:,} bytes ({compression_ratio:.1f}% reduction)")

        return optimized_data

    except Exception as e:
        logger.error(f"Error compressing image: {e}")
        # Return original data if compression fails
        return image_data


def create_watermarked_image(image_data: bytes, text: str = WATERMARK_TEXT, opacity: float = 0.5) -> bytes:
    """
    Tile a rotated text watermark across the whole image and return PNG bytes.
    The preview stays recognisable but cannot be used as the final portrait.
    """
    img = PILImage.open(BytesIO(image_data)).convert("RGBA")
    width, height = img.size

    font_size = max(int(28 * width / 1024.0), 14)
    font = _load_font(font_size)

    probe = ImageDraw.Draw(img)
    bbox = probe.textbbox((0, 0), text, font=font)
    text_w = bbox[2] - bbox[0]
    text_h = bbox[3] - bbox[1]

    # Draw on an oversized canvas so the rotation still covers every corner
    diagonal = int((width ** 2 + height ** 2) ** 0.5)
    tile_layer = PILImage.new("RGBA", (diagonal, diagonal), (0, 0, 0, 0))
    draw = ImageDraw.Draw(tile_layer)
    alpha = int(255 * opacity)
    step_x = text_w + max(width // 8, 40)
    step_y = text_h + max(height // 6, 60)
    for row, y in enumerate(range(0, diagonal, step_y)):
        offset = (step_x // 2) if row % 2 else 0
        for x in range(-offset, diagonal, step_x):
            draw.text((x + 2, y + 2), text, font=font, fill=(0, 0, 0, min(alpha, 120)))
            draw.text((x, y), text, font=font, fill=(255, 255, 255, alpha))

    tile_layer = tile_layer.rotate(30, resample=PILImage.BICUBIC)
    left = (diagonal - width) // 2
    top = (diagonal - height) // 2
    tile_layer = tile_layer.crop((left, top, left + width, top + height))

    watermarked = PILImage.alpha_composite(img, tile_layer)
    return to_png_bytes(watermarked.convert("RGB"))


def wrap_text(text: str, max_chars_per_line: int = 50) -> List[str]:
    """Greedy word wrap used for overlay quotes"""
    lines: List[str] = []
    current = ""
    for word in text.split(" "):
        candidate = f"{current} {word}".strip()
        if len(candidate) <= max_chars_per_line:
            current = candidate
        else:
            if current:
                lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def add_rainbow_bridge_overlay(image_data: bytes, pet_name: str, quote: Optional[str] = None) -> Tuple[bytes, str]:
    """
    Add the memorial text overlay (quote plus pet name over a dark fade) to a portrait.

    Returns:
        Tuple of (PNG bytes, quote used)
    """
    if quote is None:
        quote = random.choice(RAINBOW_BRIDGE_QUOTES)
    logger.info(f"🌈 Adding Rainbow Bridge text overlay for: {pet_name}")

    img = PILImage.open(BytesIO(image_data)).convert("RGBA")
    width, height = img.size

    name_font_size = max(int(width * 0.055), 12)
    quote_font_size = max(int(width * 0.026), 10)
    padding = int(width * 0.04)
    name_font = _load_font(name_font_size)
    quote_font = _load_font(quote_font_size)

    quote_lines = wrap_text(quote)
    line_height = int(quote_font_size * 1.5)
    name_y = height - padding - name_font_size
    quote_start_y = name_y - 15 - len(quote_lines) * line_height
    gradient_start_y = max(quote_start_y - padding * 2, 0)

    overlay = PILImage.new("RGBA", img.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(overlay)

    # Dark fade behind the text
    gradient_height = max(height - gradient_start_y, 1)
    for offset in range(gradient_height):
        alpha = int(153 * offset / gradient_height)
        draw.line([(0, gradient_start_y + offset), (width, gradient_start_y + offset)], fill=(0, 0, 0, alpha))

    for i, line in enumerate(quote_lines):
        bbox = draw.textbbox((0, 0), line, font=quote_font)
        x = (width - (bbox[2] - bbox[0])) // 2
        draw.text((x, quote_start_y + i * line_height), line, font=quote_font, fill=(255, 255, 255, 242))

    bbox = draw.textbbox((0, 0), pet_name, font=name_font)
    x = (width - (bbox[2] - bbox[0])) // 2
    draw.text((x + 2, name_y + 2), pet_name, font=name_font, fill=(0, 0, 0, 90))
    draw.text((x, name_y), pet_name, font=name_font, fill=GOLD + (255,))

    result = PILImage.alpha_composite(img, overlay)
    logger.info("✅ Rainbow Bridge text overlay added successfully")
    return to_png_bytes(result), quote


def composite_onto_scene(subject_data: bytes, scene_data: bytes, height_ratio: float = 0.70, bottom_margin: float = 0.08) -> bytes:
    """
    Paste a background-removed subject onto a generated scene, centred horizontally
    and resting slightly above the bottom edge.
    """
    scene = PILImage.open(BytesIO(scene_data)).convert("RGBA")
    subject = PILImage.open(BytesIO(subject_data)).convert("RGBA")

    target_height = round(scene.height * height_ratio)
    scale = target_height / subject.height
    target_width = max(round(subject.width * scale), 1)
    if target_width > scene.width:
        target_width = scene.width
        target_height = max(round(subject.height * scene.width / subject.width), 1)
    subject = subject.resize((target_width, target_height), PILImage.LANCZOS)

    left = round((scene.width - subject.width) / 2)
    top = round(scene.height - subject.height - scene.height * bottom_margin)
    logger.info(f"Compositing pet ({subject.width}x{subject.height}) onto scene ({scene.width}x{scene.height}) at left={left}, top={top}")

    scene.alpha_composite(subject, dest=(left, max(top, 0)))
    return to_png_bytes(scene)
