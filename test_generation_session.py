"""
Unit tests for the generation session state machine
"""

import os
from unittest.mock import Mock

import pytest

import config
from generation_client import CheckoutSession, GenerationResult, PortraitApiError, PurchaseFlowController
from generation_session import GenerationSession, SessionStage
from usage_ledger import InMemoryLedgerStore, UsageLedger

JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeApiClient:
    def __init__(self):
        self.calls = []
        self.error = None
        self.counter = 0
        self.on_generate = None

    def generate(self, image, **kwargs):
        self.calls.append(kwargs)
        if self.on_generate:
            self.on_generate()
        if self.error:
            raise self.error
        self.counter += 1
        return GenerationResult(image_id=f"image-{self.counter}", preview_url=f"https://cdn/preview-{self.counter}.png")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api():
    return FakeApiClient()


@pytest.fixture
def ledger():
    return UsageLedger(InMemoryLedgerStore())


@pytest.fixture
def purchase_flow():
    flow = Mock(spec=PurchaseFlowController)
    flow.start_checkout.return_value = CheckoutSession(checkout_url="https://checkout.stripe.com/pay/cs_1", session_id="cs_1")
    return flow


@pytest.fixture
def session(api, purchase_flow, ledger, clock):
    s = GenerationSession(api, purchase_flow, ledger, clock=clock)
    s.select_image(JPEG_BYTES, "rex.jpg", "image/jpeg")
    yield s
    s.close()


class TestImageSelection:
    def test_select_image_writes_local_preview(self, session):
        assert session.preview_path is not None
        assert os.path.exists(session.preview_path)

    def test_selecting_again_releases_previous_preview(self, session):
        first = session.preview_path
        session.select_image(JPEG_BYTES, "rex2.jpg", "image/jpeg")
        assert not os.path.exists(first)
        assert os.path.exists(session.preview_path)

    def test_rejects_unsupported_type(self, api, purchase_flow, ledger, clock):
        s = GenerationSession(api, purchase_flow, ledger, clock=clock)
        assert s.select_image(b"GIF89a", "rex.gif", "image/gif") is False
        assert s.error is not None
        assert s.image is None

    def test_close_releases_preview(self, api, purchase_flow, ledger, clock):
        with GenerationSession(api, purchase_flow, ledger, clock=clock) as s:
            s.select_image(JPEG_BYTES, "rex.jpg", "image/jpeg")
            path = s.preview_path
        assert not os.path.exists(path)


class TestGenerate:
    def test_successful_generation(self, session, ledger, clock):
        attempt = session.generate()

        assert attempt is not None
        assert session.stage == SessionStage.RESULT_READY
        assert attempt.preview_reference == "https://cdn/preview-1.png"
        assert attempt.expires_at == clock.now + config.PREVIEW_EXPIRY_SECONDS
        assert ledger.snapshot().free_generations_used == 1

    def test_generate_without_image_stays_idle(self, api, purchase_flow, ledger, clock):
        s = GenerationSession(api, purchase_flow, ledger, clock=clock)
        assert s.generate() is None
        assert s.stage == SessionStage.IDLE
        assert s.error
        assert api.calls == []

    def test_rainbow_bridge_requires_pet_name(self, api, purchase_flow, ledger, clock):
        s = GenerationSession(api, purchase_flow, ledger, style=config.STYLE_RAINBOW_BRIDGE, clock=clock)
        s.select_image(JPEG_BYTES, "rex.jpg", "image/jpeg")
        s.set_details(pet_name="   ")
        assert s.generate() is None
        assert s.stage == SessionStage.IDLE
        assert api.calls == []

        s.set_details(pet_name="Rex")
        assert s.generate() is not None
        assert api.calls[0]["pet_name"] == "Rex"
        s.close()

    def test_limit_reached_sets_reason_and_cta(self, session, ledger, api):
        ledger.record_generation()
        ledger.record_generation()

        assert session.generate() is None
        assert session.stage == SessionStage.IDLE
        assert "free generation limit" in session.error
        assert session.purchase_cta is True
        assert api.calls == []

    def test_failure_leaves_ledger_untouched(self, session, ledger, api):
        api.error = PortraitApiError("Failed to generate portrait. Please try again.", 500)

        assert session.generate() is None
        assert session.stage == SessionStage.FAILED
        assert session.error == "Failed to generate portrait. Please try again."
        assert ledger.snapshot().free_generations_used == 0

    def test_ledger_write_failure_still_shows_result(self, api, purchase_flow, clock):
        class ReadOnlyStore(InMemoryLedgerStore):
            def save(self, document):
                raise OSError("read-only file system")

        s = GenerationSession(api, purchase_flow, UsageLedger(ReadOnlyStore()), clock=clock)
        s.select_image(JPEG_BYTES, "rex.jpg", "image/jpeg")

        attempt = s.generate()

        assert attempt is not None
        assert attempt.attempt_id == "image-1"
        assert s.stage == SessionStage.RESULT_READY
        s.close()

    def test_reentrant_generate_is_ignored(self, session, api, ledger):
        nested = []
        api.on_generate = lambda: nested.append(session.generate())

        session.generate()

        assert nested == [None]
        assert len(api.calls) == 1
        assert ledger.snapshot().free_generations_used == 1

    def test_pack_credit_is_consumed_instead_of_free_generation(self, session, ledger, api):
        ledger.record_pack_purchase(2)

        session.generate()

        assert api.calls[0]["use_pack_credit"] is True
        record = ledger.snapshot()
        assert record.pack_credits_remaining == 1
        assert record.free_generations_used == 0


class TestRetry:
    def test_retry_uses_free_retry(self, session, ledger):
        session.generate()
        attempt = session.retry()

        assert attempt is not None
        assert attempt.is_retry is True
        assert session.stage == SessionStage.RESULT_READY
        record = ledger.snapshot()
        assert record.free_retry_used is True
        assert record.free_generations_used == 2

    def test_second_retry_refused(self, session, ledger):
        ledger.record_purchase(0)
        session.generate()
        session.retry()

        assert session.retry() is None
        assert session.stage == SessionStage.RESULT_READY
        assert session.error

    def test_retry_only_from_result_ready(self, session, api):
        assert session.retry() is None
        assert api.calls == []


class TestPurchase:
    def test_submit_email_redirects(self, session, purchase_flow):
        attempt = session.generate()
        assert session.begin_purchase() is True
        assert session.stage == SessionStage.COLLECTING_EMAIL

        checkout = session.submit_email("owner@example.com")

        assert checkout.session_id == "cs_1"
        assert session.stage == SessionStage.REDIRECTING_TO_PAY
        intent = purchase_flow.start_checkout.call_args[0][0]
        assert intent.image_id == attempt.attempt_id
        assert intent.email == "owner@example.com"

    @pytest.mark.parametrize("email", ["", "owner", "owner@example", "own er@example.com"])
    def test_invalid_email_makes_no_network_call(self, session, purchase_flow, email):
        session.generate()
        session.begin_purchase()

        assert session.submit_email(email) is None
        assert session.stage == SessionStage.COLLECTING_EMAIL
        assert session.email_error
        purchase_flow.start_checkout.assert_not_called()

    def test_begin_purchase_does_not_touch_ledger(self, session, ledger):
        session.generate()
        before = ledger.snapshot()
        session.begin_purchase()
        assert ledger.snapshot() == before

    def test_checkout_failure_then_acknowledge_returns_to_result(self, session, purchase_flow):
        purchase_flow.start_checkout.side_effect = PortraitApiError("Payment service error. Please try again.", 502)
        session.generate()
        session.begin_purchase()

        assert session.submit_email("owner@example.com") is None
        assert session.stage == SessionStage.FAILED

        session.acknowledge_error()
        assert session.stage == SessionStage.RESULT_READY

    def test_pack_purchase_from_idle(self, session, purchase_flow, ledger):
        ledger.record_generation()
        ledger.record_generation()
        session.generate()
        assert session.purchase_cta is True

        assert session.begin_pack_purchase("2-pack") is True
        session.submit_email("owner@example.com")

        intent = purchase_flow.start_checkout.call_args[0][0]
        assert intent.is_pack
        assert intent.pack_type == "2-pack"

    def test_unknown_pack_type(self, session):
        with pytest.raises(ValueError):
            session.begin_pack_purchase("10-pack")

    def test_on_payment_confirmed(self, session, ledger):
        session.on_payment_confirmed()
        session.on_payment_confirmed("2-pack")
        record = ledger.snapshot()
        assert record.purchase_count == 1
        assert record.pack_purchase_count == 1
        assert record.pack_credits_remaining == 2


class TestExpiry:
    def test_result_expires_after_fifteen_minutes(self, session, clock):
        session.generate()
        clock.advance(config.PREVIEW_EXPIRY_SECONDS - 1)
        assert session.stage == SessionStage.RESULT_READY
        assert session.time_remaining() == "00:01"

        clock.advance(1)
        assert session.stage == SessionStage.EXPIRED
        assert session.time_remaining() == "00:00"

    def test_expired_attempt_refuses_purchase(self, session, clock, purchase_flow):
        session.generate()
        session.begin_purchase()
        clock.advance(config.PREVIEW_EXPIRY_SECONDS)

        assert session.submit_email("owner@example.com") is None
        assert session.stage == SessionStage.EXPIRED
        purchase_flow.start_checkout.assert_not_called()

    def test_expired_stays_until_reset(self, session, clock):
        session.generate()
        clock.advance(config.PREVIEW_EXPIRY_SECONDS)
        assert session.stage == SessionStage.EXPIRED
        assert session.begin_purchase() is False
        assert session.generate() is None

        session.reset()
        assert session.stage == SessionStage.IDLE
        assert session.attempt is None
        assert session.image is None

    def test_time_remaining_format(self, session, clock):
        session.generate()
        assert session.time_remaining() == "15:00"
        clock.advance(61)
        assert session.time_remaining() == "13:59"
