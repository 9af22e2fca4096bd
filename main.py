from fastapi import FastAPI, HTTPException, Request, File, Form, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel
import asyncio
import requests
import time
import uvicorn
import logging
import uuid
from io import BytesIO
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse
from supabase import create_client, Client
from openai import OpenAI
import replicate
import stripe

import config
from image_utils import add_rainbow_bridge_overlay, create_watermarked_image, prepare_for_vision
from payments import create_checkout_session, handle_webhook_event, verify_webhook_event
from portrait_pipeline import GenerationParams, PortraitGenerator, select_generation_mode
from portrait_store import PortraitStore
from prompts import build_generation_prompt, extract_age

# Import security utilities
from rate_limiter import limiter, rate_limit_exceeded_handler, RATE_LIMITS
from slowapi.errors import RateLimitExceeded
from security_utils import (
    sanitize_input,
    is_valid_email,
    is_valid_uuid,
    validate_image_magic_bytes,
    scan_upload,
    mask_sensitive_data,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

GENERATION_FAILED_MESSAGE = "Failed to generate portrait. Please try again."

# Initialize Stripe
if config.STRIPE_SECRET_KEY:
    stripe.api_key = config.STRIPE_SECRET_KEY
    logger.info("✅ Stripe initialized successfully")
else:
    logger.warning("⚠️ STRIPE_SECRET_KEY not found. Stripe payments will be disabled.")

# Initialize OpenAI client
openai_client = None
if config.OPENAI_API_KEY:
    try:
        openai_client = OpenAI(api_key=config.OPENAI_API_KEY)
        logger.info("✅ OpenAI client initialized successfully")
    except Exception as e:
        logger.error(f"❌ Failed to initialize OpenAI client: {e}")
else:
    logger.warning("⚠️ OPENAI_API_KEY not found. Portrait generation will be disabled.")

# Initialize Replicate client (composite and FLUX modes only)
replicate_client = None
if config.REPLICATE_API_TOKEN:
    try:
        replicate_client = replicate.Client(api_token=config.REPLICATE_API_TOKEN)
        logger.info("✅ Replicate client initialized successfully")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Replicate client: {e}")

supabase: Client = None
if config.SUPABASE_URL and config.SUPABASE_SERVICE_KEY:
    try:
        supabase = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_KEY)
        logger.info("✅ Supabase client initialized successfully using service key")
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase client: {e}")
else:
    logger.warning("⚠️ Supabase URL or service key not found. Storage will be disabled.")

portrait_store: Optional[PortraitStore] = PortraitStore(supabase) if supabase else None
portrait_generator: Optional[PortraitGenerator] = None
if openai_client:
    portrait_generator = PortraitGenerator(
        openai_client,
        replicate_client=replicate_client,
        enable_harmonization=config.ENABLE_HARMONIZATION
    )

# FastAPI app
app = FastAPI(
    title="LumePet Portrait API",
    description="Turns pet photos into royal oil-painting portraits, with Stripe checkout for the HD file",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    response.headers["Content-Security-Policy"] = "default-src 'self'"
    return response

# Add trusted host middleware (helps prevent invalid requests)
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=config.ALLOWED_HOSTS
)

# Add CORS middleware with environment-based configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Stripe-Signature"],
    expose_headers=["Content-Disposition"]
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


# Global exception handler for better error handling
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception handler caught: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error occurred"}
    )

# Handle validation errors
@app.exception_handler(422)
async def validation_exception_handler(request: Request, exc):
    logger.warning(f"Validation error: {exc}")
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid request format or data"}
    )


class CheckoutRequest(BaseModel):
    """Checkout body; every field is optional so missing values get a 400, not a 422"""
    imageId: Optional[str] = None
    email: Optional[str] = None
    type: Optional[str] = None
    packType: Optional[str] = None


class CheckoutResponse(BaseModel):
    checkoutUrl: str
    sessionId: str


class GenerateResponse(BaseModel):
    imageId: str
    previewUrl: str


def get_store() -> PortraitStore:
    if portrait_store is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    return portrait_store


def resolve_base_url(request: Request) -> str:
    """Redirect origin for Stripe: Origin header, then Referer, then BASE_URL"""
    for header in ("origin", "referer"):
        value = request.headers.get(header)
        if not value:
            continue
        parsed = urlparse(value)
        if parsed.scheme in ("http", "https") and parsed.netloc:
            return f"{parsed.scheme}://{parsed.netloc}"
        logger.warning(f"Invalid {header} URL: {value[:100]}")
    return config.BASE_URL.rstrip("/")


def validate_image_id(image_id: Optional[str]) -> str:
    if not image_id:
        raise HTTPException(status_code=400, detail="Image ID is required")
    if not is_valid_uuid(image_id):
        raise HTTPException(status_code=400, detail="Invalid image ID format")
    return image_id


def create_portrait(
    image_id: str,
    image_data: bytes,
    style: str,
    gender: Optional[str],
    pet_name: Optional[str],
    use_pack_credit: bool
) -> str:
    """
    Run the whole generation for one upload and persist the results

    Args:
        image_id: New portrait id
        image_data: Validated upload bytes
        style: "royal" or "rainbow-bridge"
        gender: "male", "female" or None
        pet_name: Pet name for the memorial overlay
        use_pack_credit: Pack credit generations are stored paid and unwatermarked

    Returns:
        Public URL of the preview image
    """
    start_time = time.time()
    generator = portrait_generator
    store = portrait_store

    vision_image = prepare_for_vision(image_data)
    logger.info(f"Prepared image for vision: {len(vision_image):,} bytes")

    description = generator.analyze_pet(vision_image)
    prompt, species = build_generation_prompt(style, description, gender)
    logger.info(f"Detected species: {species}, age: {extract_age(description) or 'unknown'}")

    mode = select_generation_mode(
        use_openai_img2img=config.USE_OPENAI_IMG2IMG,
        use_composite=config.USE_COMPOSITE,
        use_flux=config.USE_FLUX_MODEL,
        replicate_available=generator.replicate_client is not None
    )
    params = GenerationParams(prompt=prompt, species=species, style=style, gender=gender, pet_name=pet_name)
    portrait = generator.generate(vision_image, params, mode)

    if style == config.STYLE_RAINBOW_BRIDGE and pet_name:
        try:
            portrait, quote = add_rainbow_bridge_overlay(portrait, pet_name)
            logger.info(f"🌈 Rainbow Bridge quote: {quote}")
        except Exception as e:
            logger.error(f"❌ Failed to add Rainbow Bridge overlay, keeping portrait without text: {e}")

    if use_pack_credit:
        logger.info("Pack credit used - preview is un-watermarked")
        preview = portrait
    else:
        preview = create_watermarked_image(portrait)

    hd_url = store.upload_image(portrait, f"{image_id}-hd.png")
    preview_url = store.upload_image(preview, f"{image_id}-preview.png")

    metadata = {
        "created_at": datetime.utcnow().isoformat(),
        "paid": use_pack_credit,
        "pet_description": description,
        "hd_url": hd_url,
        "preview_url": preview_url,
        "status": "completed",
    }
    if use_pack_credit:
        metadata["pack_generation"] = True
    store.save_metadata(image_id, metadata)
    store.increment_portrait_count()

    logger.info(f"✅ Portrait {image_id} created in {time.time() - start_time:.2f} seconds")
    return preview_url


@app.get("/")
@limiter.limit("60/minute")
async def root(request: Request):
    """Root endpoint with API information"""
    return {
        "message": "LumePet Portrait API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "security": {
            "rate_limiting": "enabled"
        }
    }


@app.get("/health")
@limiter.limit("30/minute")
async def health_check(request: Request):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": time.time(),
        "openai_api_key_configured": bool(config.OPENAI_API_KEY),
        "openai_client_initialized": bool(openai_client is not None),
        "replicate_configured": bool(replicate_client is not None),
        "supabase_configured": bool(supabase is not None),
        "storage_bucket": config.STORAGE_BUCKET if supabase else None,
        "stripe_configured": bool(config.STRIPE_SECRET_KEY),
        "generation_mode": select_generation_mode(
            config.USE_OPENAI_IMG2IMG, config.USE_COMPOSITE, config.USE_FLUX_MODEL, replicate_client is not None
        ).value,
    }


@app.post("/api/generate", response_model=GenerateResponse)
@limiter.limit(RATE_LIMITS["generate"])
async def generate_portrait(
    request: Request,
    image: Optional[UploadFile] = File(None),
    gender: Optional[str] = Form(None),
    style: Optional[str] = Form(None),
    petName: Optional[str] = Form(None),
    usePackCredit: Optional[str] = Form(None),
):
    """Upload a pet photo and get back a watermarked royal portrait preview"""
    if image is None:
        raise HTTPException(status_code=400, detail="No image file provided")

    if image.content_type not in config.ACCEPTED_TYPES:
        raise HTTPException(status_code=400, detail="Invalid file type. Please upload JPEG, PNG, or WebP.")

    image_data = await image.read()
    if len(image_data) > config.MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail="File too large. Maximum size is 4MB.")
    if not image_data or not validate_image_magic_bytes(image_data):
        raise HTTPException(status_code=400, detail="Invalid image file. Please upload a valid JPEG, PNG, or WebP image.")

    scan_result = scan_upload(image_data, image.filename or "")
    if not scan_result["is_safe"]:
        logger.error(f"❌ File failed security scan: {scan_result['threats_found']}")
        raise HTTPException(status_code=400, detail="File failed security scan")

    style = style or config.STYLE_ROYAL
    if style not in (config.STYLE_ROYAL, config.STYLE_RAINBOW_BRIDGE):
        raise HTTPException(status_code=400, detail="Invalid portrait style")

    pet_name = sanitize_input(petName, max_length=50) or None
    if style == config.STYLE_RAINBOW_BRIDGE and not pet_name:
        raise HTTPException(status_code=400, detail="Pet name is required for Rainbow Bridge portraits")

    if gender not in ("male", "female"):
        gender = None
    use_pack_credit = usePackCredit == "true"

    if portrait_generator is None:
        raise HTTPException(status_code=500, detail="Portrait generation is not configured")
    get_store()

    image_id = str(uuid.uuid4())
    logger.info(f"=== GENERATION {image_id} (style={style}, gender={gender or 'unspecified'}, pack_credit={use_pack_credit}) ===")

    try:
        preview_url = await asyncio.to_thread(
            create_portrait, image_id, image_data, style, gender, pet_name, use_pack_credit
        )
    except Exception as e:
        logger.error(f"❌ Generation error for {image_id}: {e}")
        raise HTTPException(status_code=500, detail=GENERATION_FAILED_MESSAGE)

    return GenerateResponse(imageId=image_id, previewUrl=preview_url)


@app.post("/api/checkout", response_model=CheckoutResponse)
@limiter.limit(RATE_LIMITS["checkout"])
async def create_checkout(request: Request, body: CheckoutRequest):
    """
    Create a Stripe Checkout Session for one portrait or a generation pack.
    This redirects the user to Stripe's hosted checkout page.
    """
    if not config.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=500, detail="Stripe is not configured")

    email = (body.email or "").strip()
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    if not is_valid_email(email):
        raise HTTPException(status_code=400, detail="Please enter a valid email address")

    is_pack_purchase = body.type == "pack"
    image_id = None
    pack_type = None
    if is_pack_purchase:
        pack_type = body.packType or "2-pack"
        if pack_type not in config.PACK_TYPES:
            raise HTTPException(status_code=400, detail="Invalid pack type")
    else:
        image_id = validate_image_id(body.imageId)
        store = get_store()
        try:
            record = store.get_metadata(image_id)
        except Exception as e:
            logger.error(f"❌ Error looking up portrait {image_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to look up portrait")
        if not record:
            raise HTTPException(status_code=404, detail="Image not found")

    if portrait_store is not None:
        portrait_store.save_email(email, image_id, "pack-checkout" if is_pack_purchase else "checkout")

    base_url = resolve_base_url(request)
    logger.info(f"Creating checkout for {mask_sensitive_data(email)} ({'pack ' + pack_type if is_pack_purchase else image_id})")

    try:
        checkout_session = create_checkout_session(base_url, email, image_id=image_id, pack_type=pack_type)
    except stripe.StripeError as e:
        logger.error(f"Stripe error creating checkout session: {e}")
        raise HTTPException(status_code=502, detail="Payment service error. Please try again.")

    return CheckoutResponse(checkoutUrl=checkout_session.url, sessionId=checkout_session.id)


@app.get("/api/image-info")
@limiter.limit(RATE_LIMITS["image_info"])
async def get_image_info(request: Request, imageId: Optional[str] = Query(None)):
    """Public portrait info. The HD URL is only returned once the portrait is paid."""
    image_id = validate_image_id(imageId)
    store = get_store()

    try:
        record = store.get_metadata(image_id)
    except Exception as e:
        logger.error(f"❌ Error fetching image info for {image_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch image info")

    if not record:
        raise HTTPException(status_code=404, detail="Image not found")

    paid = bool(record.get("paid"))
    info = {
        "imageId": image_id,
        "previewUrl": record.get("preview_url"),
        "paid": paid,
        "createdAt": record.get("created_at"),
    }
    if paid:
        info["hdUrl"] = record.get("hd_url")
    return info


@app.get("/api/download")
@limiter.limit(RATE_LIMITS["download"])
async def download_portrait(request: Request, imageId: Optional[str] = Query(None)):
    """Download the HD portrait after purchase"""
    image_id = validate_image_id(imageId)
    store = get_store()

    try:
        record = store.get_metadata(image_id)
    except Exception as e:
        logger.error(f"❌ Error fetching portrait {image_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch portrait")

    if not record:
        raise HTTPException(status_code=404, detail="Image not found")
    if not record.get("paid"):
        raise HTTPException(status_code=403, detail="Portrait has not been purchased")

    hd_url = record.get("hd_url")
    if not hd_url:
        raise HTTPException(status_code=404, detail="HD image not available")

    try:
        image_response = await asyncio.to_thread(requests.get, hd_url, timeout=30)
        image_response.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.error(f"Error downloading HD portrait {image_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to download portrait")

    image_bytes = image_response.content
    return StreamingResponse(
        BytesIO(image_bytes),
        media_type="image/png",
        headers={
            "Content-Disposition": f'attachment; filename="lumepet-portrait-{image_id}.png"',
            "Content-Length": str(len(image_bytes)),
            "Cache-Control": "private, no-store"
        }
    )


@app.post("/api/webhook")
@limiter.limit(RATE_LIMITS["webhook"])
async def stripe_webhook(request: Request):
    """
    Handle Stripe webhook events.
    Only a verified event can change a portrait; after verification the
    response is always 200.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        raise HTTPException(status_code=400, detail="Missing stripe-signature header")
    if not config.STRIPE_WEBHOOK_SECRET:
        logger.error("❌ STRIPE_WEBHOOK_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Webhook secret not configured")

    try:
        event = verify_webhook_event(payload, sig_header, config.STRIPE_WEBHOOK_SECRET)
    except stripe.SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(status_code=400, detail="Invalid signature")
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")

    if portrait_store is None:
        logger.error("❌ Webhook received but database is not configured")
    else:
        handle_webhook_event(event, portrait_store)

    return {"received": True}


@app.get("/api/stats")
async def get_stats(request: Request):
    """Public portrait counter for the landing page"""
    count = portrait_store.get_portrait_count() if portrait_store is not None else config.FALLBACK_PORTRAIT_COUNT
    return JSONResponse(
        content={"portraitsCreated": count},
        headers={"Cache-Control": "public, s-maxage=60, stale-while-revalidate=120"}
    )


if __name__ == "__main__":
    print("🚀 Starting LumePet Portrait Server...")
    print("📚 API Documentation: http://localhost:8000/docs")
    print("🔍 Health Check: http://localhost:8000/health")
    print("⚡ Server running on: http://localhost:8000")

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=not config.IS_PRODUCTION,
        log_level="info",
        access_log=True,
        server_header=False,
        date_header=False,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=10
    )
