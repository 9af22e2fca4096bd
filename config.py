"""
Configuration constants for the LumePet portrait service
"""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() == "true"


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# === API KEYS ===
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")

# Supabase Configuration
SUPABASE_URL = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_SERVICE_KEY")
STORAGE_BUCKET = "pet-portraits"
PORTRAITS_TABLE = "portraits"
EMAILS_TABLE = "emails"
STATS_TABLE = "stats"

# Stripe Configuration
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

# CORS Configuration - use environment variables for production
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(",")

BASE_URL = os.getenv("NEXT_PUBLIC_BASE_URL") or os.getenv("BASE_URL", "http://localhost:3000")

# === PRICING ===
PRICE_DISPLAY = "$0.50"
PRICE_AMOUNT = _env_int("PRICE_AMOUNT", 50)  # cents
CURRENCY = "usd"

PACK_2_PRICE_DISPLAY = "$15"
PACK_2_PRICE_AMOUNT = 1500  # cents
PACK_2_GENERATIONS = 2
PACK_TYPES = {
    "2-pack": {"amount": PACK_2_PRICE_AMOUNT, "generations": PACK_2_GENERATIONS},
}

PRODUCT_NAME = "LumePet Royal Portrait"
PRODUCT_DESCRIPTION = "Full-resolution, watermark-free royal Renaissance portrait of your beloved pet as nobility"
PACK_PRODUCT_NAME = "LumePet Generation Pack (2)"
PACK_PRODUCT_DESCRIPTION = "2 un-watermarked generations - Create beautiful portraits without watermarks"

# === UPLOADS ===
MAX_FILE_SIZE = 4 * 1024 * 1024  # 4MB
ACCEPTED_TYPES = ["image/jpeg", "image/png", "image/webp"]
CLIENT_COMPRESS_THRESHOLD = int(3.5 * 1024 * 1024)
MAX_DESCRIPTION_LENGTH = 2000

STYLE_ROYAL = "royal"
STYLE_RAINBOW_BRIDGE = "rainbow-bridge"
STYLE_DESCRIPTION = "Dutch Golden Age royal portrait with velvet robes, ermine trim, ornate jewelry, and dramatic Rembrandt lighting"

# === USAGE LIMITS ===
FREE_GENERATION_LIMIT = 2
GENERATIONS_PER_PURCHASE = 5
PREVIEW_EXPIRY_SECONDS = 15 * 60
FALLBACK_PORTRAIT_COUNT = 335

# === GENERATION MODELS ===
USE_OPENAI_IMG2IMG = _env_flag("USE_OPENAI_IMG2IMG")
USE_COMPOSITE = _env_flag("USE_COMPOSITE")
USE_FLUX_MODEL = _env_flag("USE_FLUX_MODEL")
ENABLE_HARMONIZATION = _env_flag("ENABLE_HARMONIZATION")

OPENAI_IMAGE_MODEL = "gpt-image-1"
OPENAI_VISION_MODEL = "gpt-4o"
FLUX_MODEL = "black-forest-labs/flux-1.1-pro"
REMBG_MODEL = "cjwbw/rembg:fb8af171cfa1616ddcf1242c093f9c46bcada5ad4cf6f2fbe8b81b330ec5c003"

# Lower prompt strength keeps more of the original photo
FLUX_PROMPT_STRENGTH = _env_float("FLUX_PROMPT_STRENGTH", 0.15)
FLUX_GUIDANCE_SCALE = _env_float("FLUX_GUIDANCE_SCALE", 2.5)

# Production mode check
IS_PRODUCTION = os.getenv("ENVIRONMENT", "development") == "production"
