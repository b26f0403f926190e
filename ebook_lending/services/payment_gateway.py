import json
import logging
import math
from typing import Any, Dict, List, Optional

import httpx

from ebook_lending.config import settings
from ebook_lending.database import get_db_connection, transaction
from ebook_lending.errors import LendingError, NotFound, Outcome, PaymentGatewayFailure, ValidationError
from ebook_lending.logging_config import fields
from ebook_lending.models import Payment
from ebook_lending.services.http_client import GatewayHTTPClient, build_timeout, get_http_client
from ebook_lending.users import fetch_user


class PaymentGatewayAdapter:
    """Client for the external payment-check service.

    One synchronous POST per payment, bounded by a timeout and never retried.
    Anything other than ``{"paymentSuccess": {"Status": true}}`` is a failure.
    """

    def __init__(self, client: Optional[GatewayHTTPClient] = None, url: Optional[str] = None,
                 timeout: Optional[float] = None, logger: Optional[logging.Logger] = None) -> None:
        self.client = client or get_http_client()
        self.url = url or settings.payment_gateway_url
        self.timeout = build_timeout(timeout if timeout is not None else settings.payment_gateway_timeout)
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def build_payload(payment: Payment) -> Dict[str, Any]:
        # Key names (including the service's own misspelling) are its wire format.
        return {
            "storeID": settings.payment_store_id,
            "customerID": str(payment.user_id),
            "date": payment.payment_date.isoformat(),
            "time": payment.payment_time.strftime("%H:%M:%S"),
            "timeZone": settings.payment_time_zone,
            "transactionAmount": payment.amount,
            "currencyCode": settings.payment_currency,
            "forcePaymentSatusReturnType": True,
        }

    def check(self, payment: Payment) -> None:
        """Return normally when the gateway approves the payment, raise PaymentGatewayFailure otherwise."""
        payload = self.build_payload(payment)
        try:
            response = self.client.post(self.url, json=payload, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            self.logger.warning("Payment gateway timed out", extra=fields(payment_id=payment.id))
            raise PaymentGatewayFailure("Payment gateway timed out. Please try again") from exc
        except httpx.RequestError as exc:
            self.logger.warning("Payment gateway unreachable: %s", exc, extra=fields(payment_id=payment.id))
            raise PaymentGatewayFailure("Payment gateway unreachable. Please try again") from exc

        body = self._parse_body(response, payment)
        status = self._extract_status(body, payment)
        if status is not True:
            self.logger.info("Payment declined", extra=fields(payment_id=payment.id, status=status))
            raise PaymentGatewayFailure("Payment was declined by the payment gateway.")
        self.logger.info("Payment approved", extra=fields(payment_id=payment.id, amount=payment.amount))

    def _parse_body(self, response: httpx.Response, payment: Payment) -> Any:
        if not response.is_success:
            self.logger.warning("Payment gateway returned HTTP %s", response.status_code,
                                extra=fields(payment_id=payment.id))
            raise PaymentGatewayFailure(f"Payment gateway returned HTTP {response.status_code}. Please try again")
        if not response.content or not response.content.strip():
            raise PaymentGatewayFailure("Payment gateway failed and returned null. Please try again")
        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            self.logger.warning("Payment gateway returned malformed JSON", extra=fields(payment_id=payment.id))
            raise PaymentGatewayFailure("Payment gateway returned a malformed response. Please try again") from exc
        if body is None:
            raise PaymentGatewayFailure("Payment gateway failed and returned null. Please try again")
        return body

    def _extract_status(self, body: Any, payment: Payment) -> Any:
        success = body.get("paymentSuccess") if isinstance(body, dict) else None
        if not isinstance(success, dict) or "Status" not in success:
            self.logger.warning("Payment gateway response has no status", extra=fields(payment_id=payment.id))
            raise PaymentGatewayFailure("Payment gateway response did not include a payment status.")
        return success["Status"]


class PaymentService:
    """Creates payments once the gateway approves them. Independent of loans."""

    def __init__(self, adapter: Optional[PaymentGatewayAdapter] = None,
                 logger: Optional[logging.Logger] = None) -> None:
        self.adapter = adapter or PaymentGatewayAdapter()
        self.logger = logger or logging.getLogger(__name__)

    def create_payment(self, user_id: str, amount: float) -> Outcome[Payment]:
        try:
            return Outcome.success(self._create_payment(user_id, amount))
        except LendingError as e:
            return Outcome.failure(e)

    def _create_payment(self, user_id: str, amount: float) -> Payment:
        if amount is None or not math.isfinite(amount) or amount < 0:
            raise ValidationError("Payment amount must be a non-negative number.")

        conn = get_db_connection()
        try:
            if fetch_user(conn, user_id) is None:
                raise NotFound("User not found.")

            payment = Payment(user_id=user_id, amount=amount)
            # No transaction is open while the gateway call is in flight.
            self.adapter.check(payment)

            with transaction(conn):
                conn.execute(
                    "INSERT INTO payments (id, user_id, amount, payment_date, payment_time) VALUES (?, ?, ?, ?, ?)",
                    (payment.id, payment.user_id, payment.amount,
                     payment.payment_date.isoformat(), payment.payment_time.isoformat()),
                )
            self.logger.info("Payment recorded", extra=fields(payment_id=payment.id, user_id=user_id))
            return payment
        finally:
            conn.close()

    def list_payments(self) -> List[Payment]:
        conn = get_db_connection()
        try:
            rows = conn.execute(
                "SELECT id, user_id, amount, payment_date, payment_time FROM payments "
                "ORDER BY payment_date, payment_time"
            ).fetchall()
            return [Payment.from_row(r) for r in rows]
        finally:
            conn.close()

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        conn = get_db_connection()
        try:
            row = conn.execute(
                "SELECT id, user_id, amount, payment_date, payment_time FROM payments WHERE id = ?",
                (payment_id,),
            ).fetchone()
            return Payment.from_row(row) if row else None
        finally:
            conn.close()
