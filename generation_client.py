"""
HTTP client for the portrait API and the purchase redirect flow
"""

import logging
import webbrowser
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

import config
from image_utils import compress_image

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300  # generation can take a few minutes

TOO_LARGE_MESSAGE = "Image is too large. Please use an image under 4MB."
NETWORK_ERROR_MESSAGE = "Network error. Please check your connection and try again."


class PortraitApiError(Exception):
    """Error returned by the portrait API, with a message that is safe to show"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class GenerationResult:
    image_id: str
    preview_url: str


@dataclass(frozen=True)
class CheckoutSession:
    checkout_url: str
    session_id: Optional[str] = None


@dataclass(frozen=True)
class PurchaseIntent:
    """Either a single portrait (image_id) or a pack (pack_type)"""
    email: str
    image_id: Optional[str] = None
    pack_type: Optional[str] = None

    @property
    def is_pack(self) -> bool:
        return self.pack_type is not None


class PortraitApiClient:
    def __init__(self, base_url: str = config.BASE_URL, session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or DEFAULT_TIMEOUT

    def generate(
        self,
        image: bytes,
        filename: str = "pet.jpg",
        content_type: str = "image/jpeg",
        gender: Optional[str] = None,
        style: str = config.STYLE_ROYAL,
        pet_name: Optional[str] = None,
        use_pack_credit: bool = False
    ) -> GenerationResult:
        """
        Upload a pet photo and wait for the watermarked preview

        Args:
            image: Raw photo bytes
            filename: Original filename
            content_type: MIME type of the photo
            gender: "male", "female" or None
            style: "royal" or "rainbow-bridge"
            pet_name: Required for rainbow-bridge portraits
            use_pack_credit: Ask the server for an un-watermarked result

        Returns:
            GenerationResult with the new image id and preview URL
        """
        if len(image) > config.CLIENT_COMPRESS_THRESHOLD:
            logger.info(f"Compressing {len(image):,} byte photo before upload")
            image = compress_image(image, max_dimension=2000, quality=85)
            filename = filename.rsplit(".", 1)[0] + ".jpg"
            content_type = "image/jpeg"

        data = {
            "style": style,
            "usePackCredit": "true" if use_pack_credit else "false",
        }
        if gender:
            data["gender"] = gender
        if pet_name:
            data["petName"] = pet_name

        payload = self._request(
            "POST",
            "/api/generate",
            files={"image": (filename, image, content_type)},
            data=data,
        )
        if not payload.get("imageId") or not payload.get("previewUrl"):
            raise PortraitApiError("No image was returned. Please try again.")
        return GenerationResult(image_id=payload["imageId"], preview_url=payload["previewUrl"])

    def create_checkout(self, intent: PurchaseIntent) -> CheckoutSession:
        if intent.is_pack:
            body = {"email": intent.email, "type": "pack", "packType": intent.pack_type}
        else:
            body = {"email": intent.email, "imageId": intent.image_id}
        payload = self._request("POST", "/api/checkout", json=body)
        if not payload.get("checkoutUrl"):
            raise PortraitApiError("No checkout URL received")
        return CheckoutSession(checkout_url=payload["checkoutUrl"], session_id=payload.get("sessionId"))

    def get_image_info(self, image_id: str) -> Dict[str, Any]:
        return self._request("GET", "/api/image-info", params={"imageId": image_id})

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"❌ Request to {path} failed: {e}")
            raise PortraitApiError(NETWORK_ERROR_MESSAGE) from e

        if response.status_code == 413:
            raise PortraitApiError(TOO_LARGE_MESSAGE, 413)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok:
            message = None
            if isinstance(payload, dict):
                message = payload.get("detail") or payload.get("error")
            if not isinstance(message, str):
                message = f"Request failed with status {response.status_code}"
            logger.warning(f"⚠️ {path} returned {response.status_code}: {message}")
            raise PortraitApiError(message, response.status_code)

        if not isinstance(payload, dict):
            raise PortraitApiError("Unexpected response from server", response.status_code)
        return payload


class PurchaseFlowController:
    """Creates the checkout session and sends the browser to Stripe"""

    def __init__(self, api_client: PortraitApiClient, redirect: Callable[[str], Any] = webbrowser.open):
        self.api_client = api_client
        self.redirect = redirect

    def start_checkout(self, intent: PurchaseIntent) -> CheckoutSession:
        checkout = self.api_client.create_checkout(intent)
        logger.info(f"Redirecting to checkout session {checkout.session_id}")
        self.redirect(checkout.checkout_url)
        return checkout
