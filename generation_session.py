"""
Session state machine for one upload-generate-purchase flow

A UI drives the session with discrete events (select image, generate, retry,
purchase, submit email, reset) and renders from `stage`, `error` and
`attempt`. Every network call goes through the injected client and
purchase controller, and every counter change goes through the ledger.
"""

import logging
import os
import re
import tempfile
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import config
from generation_client import CheckoutSession, PortraitApiError, PurchaseFlowController, PurchaseIntent
from usage_ledger import UsageLedger

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

GENERIC_FAILURE_MESSAGE = "Something went wrong while creating your portrait. Please try again."


class SessionStage(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    AWAITING_RESULT = "awaiting_result"
    RESULT_READY = "result_ready"
    COLLECTING_EMAIL = "collecting_email"
    REDIRECTING_TO_PAY = "redirecting_to_pay"
    EXPIRED = "expired"
    FAILED = "failed"


class FailedStep(str, Enum):
    GENERATE = "generate"
    CHECKOUT = "checkout"


@dataclass
class GenerationAttempt:
    attempt_id: str
    stage: SessionStage
    preview_reference: Optional[str] = None
    is_retry: bool = False
    expires_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class GenerationSession:
    """
    One user's flow from photo selection to the Stripe redirect.

    Args:
        api_client: PortraitApiClient (or anything with the same generate())
        purchase_flow: PurchaseFlowController used for checkout
        ledger: UsageLedger consulted before generating
        style: "royal" or "rainbow-bridge"
        clock: Returns the current time in epoch seconds
    """

    def __init__(
        self,
        api_client,
        purchase_flow: PurchaseFlowController,
        ledger: UsageLedger,
        style: str = config.STYLE_ROYAL,
        clock: Callable[[], float] = time.time
    ):
        self.api_client = api_client
        self.purchase_flow = purchase_flow
        self.ledger = ledger
        self.style = style
        self.clock = clock

        self._stage = SessionStage.IDLE
        self._busy = threading.Lock()

        self.attempt: Optional[GenerationAttempt] = None
        self.image: Optional[bytes] = None
        self.filename: Optional[str] = None
        self.content_type: Optional[str] = None
        self.preview_path: Optional[str] = None
        self.gender: Optional[str] = None
        self.pet_name: Optional[str] = None

        self.error: Optional[str] = None
        self.email_error: Optional[str] = None
        self.purchase_cta = False
        self.email: Optional[str] = None
        self.pending_pack_type: Optional[str] = None
        self.failed_step: Optional[FailedStep] = None

    # === State ===

    @property
    def stage(self) -> SessionStage:
        return self.tick()

    def tick(self, now: Optional[float] = None) -> SessionStage:
        """Apply preview expiry and return the current stage"""
        if now is None:
            now = self.clock()
        if self.attempt and self.attempt.is_expired(now):
            if self._stage == SessionStage.RESULT_READY or (
                self._stage == SessionStage.COLLECTING_EMAIL and self.pending_pack_type is None
            ):
                logger.info(f"Preview {self.attempt.attempt_id} expired")
                self._set_stage(SessionStage.EXPIRED)
        return self._stage

    def time_remaining(self, now: Optional[float] = None) -> str:
        """Countdown text for the preview, "MM:SS" """
        if not self.attempt:
            return "00:00"
        if now is None:
            now = self.clock()
        remaining = max(int(self.attempt.expires_at - now), 0)
        minutes, seconds = divmod(remaining, 60)
        return f"{minutes:02d}:{seconds:02d}"

    def _set_stage(self, stage: SessionStage) -> None:
        self._stage = stage
        if self.attempt:
            self.attempt.stage = stage

    # === Input ===

    def select_image(self, image: bytes, filename: str = "pet.jpg", content_type: str = "image/jpeg") -> bool:
        """Attach the pet photo. Only accepted while idle."""
        if self.stage != SessionStage.IDLE:
            return False
        if content_type not in config.ACCEPTED_TYPES:
            self.error = "Please upload a JPEG, PNG, or WebP image"
            return False
        if len(image) > config.MAX_FILE_SIZE:
            self.error = "File size must be under 4MB"
            return False

        self._release_preview()
        suffix = os.path.splitext(filename or "")[1] or ".jpg"
        fd, path = tempfile.mkstemp(prefix="lumepet-preview-", suffix=suffix)
        with os.fdopen(fd, "wb") as handle:
            handle.write(image)

        self.image = image
        self.filename = filename
        self.content_type = content_type
        self.preview_path = path
        self.error = None
        return True

    def set_details(self, gender: Optional[str] = None, pet_name: Optional[str] = None) -> None:
        self.gender = gender
        self.pet_name = pet_name.strip() if pet_name else None

    # === Generation ===

    def generate(self, is_retry: bool = False) -> Optional[GenerationAttempt]:
        """
        Submit the selected photo for a portrait

        Returns:
            The new GenerationAttempt, or None when the call was refused,
            ignored (already running) or failed
        """
        if not self._busy.acquire(blocking=False):
            return None
        try:
            return self._generate(is_retry)
        finally:
            self._busy.release()

    def _generate(self, is_retry: bool) -> Optional[GenerationAttempt]:
        if self.stage not in (SessionStage.IDLE, SessionStage.RESULT_READY):
            return None

        if not self.image:
            self.error = "Please select a photo of your pet first"
            return None
        if self.style == config.STYLE_RAINBOW_BRIDGE and not self.pet_name:
            self.error = "Please enter your pet's name"
            return None

        check = self.ledger.evaluate()
        if not check.allowed:
            self.attempt = None
            self._set_stage(SessionStage.IDLE)
            self.error = check.reason
            self.purchase_cta = True
            return None

        use_pack_credit = check.has_pack_credits
        self.attempt = None
        self.error = None
        self.purchase_cta = False
        self._set_stage(SessionStage.SUBMITTING)

        try:
            self._set_stage(SessionStage.AWAITING_RESULT)
            result = self.api_client.generate(
                self.image,
                filename=self.filename,
                content_type=self.content_type,
                gender=self.gender,
                style=self.style,
                pet_name=self.pet_name,
                use_pack_credit=use_pack_credit,
            )
        except PortraitApiError as e:
            return self._fail(FailedStep.GENERATE, e.message)
        except Exception as e:
            logger.error(f"❌ Unexpected generation error: {e}")
            return self._fail(FailedStep.GENERATE, GENERIC_FAILURE_MESSAGE)

        # Portrait already exists server-side; a failed ledger write leaves the result usable
        try:
            if use_pack_credit:
                self.ledger.consume_pack_credit()
            else:
                self.ledger.record_generation(is_retry)
        except OSError as e:
            logger.error(f"❌ Failed to record generation in usage ledger: {e}")

        self.attempt = GenerationAttempt(
            attempt_id=result.image_id,
            stage=SessionStage.RESULT_READY,
            preview_reference=result.preview_url,
            is_retry=is_retry,
            expires_at=self.clock() + config.PREVIEW_EXPIRY_SECONDS,
        )
        self._set_stage(SessionStage.RESULT_READY)
        logger.info(f"✅ Portrait {result.image_id} ready")
        return self.attempt

    def retry(self) -> Optional[GenerationAttempt]:
        """Use the single free retry on the current result"""
        if self.stage != SessionStage.RESULT_READY:
            return None
        if self.ledger.snapshot().free_retry_used:
            self.error = "You've already used your free retry"
            return None
        check = self.ledger.evaluate()
        if not check.allowed:
            self.error = check.reason
            self.purchase_cta = True
            return None

        if self.attempt:
            self.attempt.preview_reference = None
        return self.generate(is_retry=True)

    def _fail(self, step: FailedStep, message: str) -> None:
        self.failed_step = step
        self.error = message
        self._set_stage(SessionStage.FAILED)
        logger.warning(f"⚠️ {step.value} failed: {message}")
        return None

    # === Purchase ===

    def begin_purchase(self) -> bool:
        if self.stage != SessionStage.RESULT_READY:
            return False
        self.pending_pack_type = None
        self.email_error = None
        self._set_stage(SessionStage.COLLECTING_EMAIL)
        return True

    def begin_pack_purchase(self, pack_type: str = "2-pack") -> bool:
        if pack_type not in config.PACK_TYPES:
            raise ValueError(f"Unknown pack type: {pack_type}")
        if self.stage not in (SessionStage.IDLE, SessionStage.RESULT_READY):
            return False
        self.pending_pack_type = pack_type
        self.email_error = None
        self._set_stage(SessionStage.COLLECTING_EMAIL)
        return True

    def cancel_purchase(self) -> None:
        """Close the email form without paying"""
        if self.stage != SessionStage.COLLECTING_EMAIL:
            return
        self.pending_pack_type = None
        self.email_error = None
        self._set_stage(SessionStage.RESULT_READY if self.attempt else SessionStage.IDLE)

    def submit_email(self, email: str) -> Optional[CheckoutSession]:
        """Validate the email and hand a purchase intent to the checkout flow"""
        if self.stage != SessionStage.COLLECTING_EMAIL:
            return None

        email = (email or "").strip()
        if not EMAIL_PATTERN.match(email):
            self.email_error = "Please enter a valid email address"
            return None
        self.email_error = None
        self.email = email

        if self.pending_pack_type:
            intent = PurchaseIntent(email=email, pack_type=self.pending_pack_type)
        else:
            if not self.attempt or self.attempt.is_expired(self.clock()):
                self._set_stage(SessionStage.EXPIRED)
                return None
            intent = PurchaseIntent(email=email, image_id=self.attempt.attempt_id)

        self._set_stage(SessionStage.REDIRECTING_TO_PAY)
        try:
            return self.purchase_flow.start_checkout(intent)
        except PortraitApiError as e:
            return self._fail(FailedStep.CHECKOUT, e.message)
        except Exception as e:
            logger.error(f"❌ Unexpected checkout error: {e}")
            return self._fail(FailedStep.CHECKOUT, "Failed to start checkout. Please try again.")

    def on_payment_confirmed(self, pack_type: Optional[str] = None) -> None:
        """Record a completed payment after the success redirect"""
        if pack_type:
            self.ledger.record_pack_purchase(config.PACK_TYPES[pack_type]["generations"])
        else:
            self.ledger.record_purchase(0)

    # === Recovery ===

    def acknowledge_error(self) -> None:
        if self.stage != SessionStage.FAILED:
            return
        checkout_failed = self.failed_step == FailedStep.CHECKOUT
        self.error = None
        self.failed_step = None
        self.pending_pack_type = None
        if checkout_failed and self.attempt and not self.attempt.is_expired(self.clock()):
            self._set_stage(SessionStage.RESULT_READY)
        else:
            self.attempt = None
            self._set_stage(SessionStage.IDLE)

    def reset(self) -> None:
        """Back to a fresh IDLE session"""
        self._release_preview()
        self.attempt = None
        self.image = None
        self.filename = None
        self.content_type = None
        self.gender = None
        self.pet_name = None
        self.error = None
        self.email_error = None
        self.purchase_cta = False
        self.email = None
        self.pending_pack_type = None
        self.failed_step = None
        self._stage = SessionStage.IDLE

    def close(self) -> None:
        self._release_preview()

    def _release_preview(self) -> None:
        if not self.preview_path:
            return
        try:
            os.remove(self.preview_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"⚠️ Could not remove preview file {self.preview_path}: {e}")
        self.preview_path = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False
