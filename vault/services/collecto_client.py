"""
Collecto partner API client.

Wraps the partner payments platform: authentication, service/product
listings, invoices, request-to-pay and payment status polling, phone
number verification.

FAILURE POLICY:
- Informational reads (service listings, phone verification) degrade to a
  placeholder payload marked "fallback": True instead of failing.
- Everything else raises UpstreamUnavailableError. Payment calls are never
  turned into a fabricated success.
"""
import json
import re
import time
from typing import Optional, Dict, Any, List

import requests
from flask import current_app

from ..utils.cache import cache, cache_key
from ..utils.exceptions import UpstreamUnavailableError, ValidationError
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


# Substrings of the partner's status field meaning the payment went through
SUCCESS_STATUS_MARKERS = ('success', 'succeed', 'paid', 'confirmed')

# Substrings meaning the payment definitively did not go through
FAILURE_STATUS_MARKERS = ('fail', 'unsuccess', 'cancel', 'declin', 'reject', 'expire')

# Statuses containing a success marker that still mean "not yet paid"
NEGATED_STATUS_PATTERN = re.compile(r'\bnot\b|unpaid|unconfirmed')


def _normalize_status(status) -> str:
    # 'NOT_PAID' and 'not paid' compare the same
    return re.sub(r'[^a-z0-9]+', ' ', str(status or '').lower()).strip()


def is_success_status(status) -> bool:
    """Case-insensitive success-equivalent match ('SUCCESSFUL', 'PaymentSuccess', 'Paid' ...)."""
    text = _normalize_status(status)
    if not text or is_failure_status(status) or NEGATED_STATUS_PATTERN.search(text):
        return False
    return any(marker in text for marker in SUCCESS_STATUS_MARKERS)


def is_failure_status(status) -> bool:
    text = _normalize_status(status)
    return any(marker in text for marker in FAILURE_STATUS_MARKERS)


def extract_status(payload: Dict[str, Any]) -> Optional[str]:
    """
    Find the payment status in a partner response.

    The partner wraps results in an envelope whose own 'status' only reports
    whether the API call worked, so nested payment fields win.
    """
    if not isinstance(payload, dict):
        return None
    data = payload.get('data')
    if isinstance(data, dict):
        for field in ('status', 'payment_status', 'paymentStatus', 'transactionStatus'):
            if data.get(field):
                return str(data[field])
    for field in ('payment_status', 'paymentStatus', 'transactionStatus'):
        if payload.get(field):
            return str(payload[field])
    if data is None and payload.get('status'):
        return str(payload['status'])
    return None


def extract_transaction_id(payload: Dict[str, Any]) -> Optional[str]:
    """Partner-issued transaction id of a request-to-pay response, if any."""
    if not isinstance(payload, dict):
        return None
    data = payload.get('data') if isinstance(payload.get('data'), dict) else {}
    for source in (data, payload):
        for field in ('transactionId', 'transaction_id', 'id'):
            if source.get(field):
                return str(source[field])
    return None


def _mask(headers: Dict[str, str]) -> Dict[str, str]:
    return {
        k: ('***' if re.search(r'api-?key|authorization|token|secret', k, re.I) else v)
        for k, v in headers.items()
    }


class CollectoClient:
    """
    Client for the Collecto partner REST API.

    Usage:
        client = CollectoClient()
        services = client.list_services('M1', page=1)
        result = client.request_to_pay(...)
    """

    def __init__(self, base_url: str = None, api_key: str = None, timeout: float = None):
        config = current_app.config
        self.base_url = (base_url or config.get('COLLECTO_BASE_URL') or '').rstrip('/')
        self.api_key = api_key if api_key is not None else config.get('COLLECTO_API_KEY', '')
        self.timeout = timeout or config.get('COLLECTO_TIMEOUT', 15)

    def _headers(self, user_token: str = None) -> Dict[str, str]:
        headers = {
            'x-api-key': self.api_key,
            'Content-Type': 'application/json'
        }
        if user_token:
            headers['authorization'] = user_token
        return headers

    def _request(
        self,
        method: str,
        path: str,
        payload: Dict[str, Any] = None,
        params: Dict[str, Any] = None,
        user_token: str = None
    ) -> Dict[str, Any]:
        """Send a request and return the decoded JSON body."""
        url = f'{self.base_url}/{path.lstrip("/")}'
        headers = self._headers(user_token)
        logger.info(f'[Collecto ->] {method} {url}')
        logger.debug(f'[Collecto ->] headers={_mask(headers)} params={params}')

        start = time.monotonic()
        try:
            response = requests.request(
                method,
                url,
                json=payload,
                params=params,
                headers=headers,
                timeout=self.timeout
            )
        except requests.Timeout as e:
            logger.error(f'[Collecto] {method} {path} timed out after {self.timeout}s')
            raise UpstreamUnavailableError(f'Collecto {path} timed out', original_error=e) from e
        except requests.RequestException as e:
            logger.error(f'[Collecto] {method} {path} failed: {e}')
            raise UpstreamUnavailableError(f'Collecto {path} unreachable: {e}', original_error=e) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(f'[Collecto <-] {response.status_code} ({elapsed_ms}ms)')

        if response.status_code >= 400:
            raise UpstreamUnavailableError(
                f'Collecto {path} returned HTTP {response.status_code}',
                status_code=response.status_code
            )

        try:
            # Strip UTF-8 BOM if present
            return json.loads(response.text.lstrip('\ufeff')) if response.text else {}
        except ValueError as e:
            raise UpstreamUnavailableError(f'Collecto {path} returned invalid JSON', original_error=e) from e

    # ==================== Authentication ====================

    def authenticate(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        """Exchange user credentials for a partner token."""
        return self._request('POST', '/auth', payload=credentials)

    def verify_token(self, token: str) -> Dict[str, Any]:
        """
        Verify a partner-issued user token.

        Returns:
            The partner's user record with a boolean 'verified' key
        """
        if not token:
            raise ValidationError('token is required', 'token')
        token = token.replace('Bearer ', '', 1)
        body = self._request('POST', '/authVerify', payload={'token': token})
        data = body.get('data') if isinstance(body.get('data'), dict) else {}
        return {**data, 'verified': bool(data.get('verified'))}

    # ==================== Services & Products ====================

    def list_services(self, collecto_id: str, page: int = 1, user_token: str = None) -> Dict[str, Any]:
        """
        List the merchant's services and products.

        Cached for SERVICES_CACHE_TIMEOUT seconds. Falls back to an empty
        placeholder listing when the partner is unavailable.
        """
        if not collecto_id:
            raise ValidationError('collectoId is required', 'collecto_id')
        page = int(page) if page else 1

        key = cache_key('collecto', 'services', collecto_id, page)
        cached = cache.get(key)
        if cached is not None:
            return cached

        try:
            body = self._request(
                'POST',
                '/servicesAndProducts',
                payload={'collectoId': collecto_id, 'page': page},
                user_token=user_token
            )
        except UpstreamUnavailableError as e:
            logger.warning(f'Service listing for {collecto_id} unavailable, using placeholder: {e.message}')
            return {
                'data': [],
                'page': page,
                'collecto_id': collecto_id,
                'fallback': True
            }

        cache.set(key, body, timeout=current_app.config.get('SERVICES_CACHE_TIMEOUT', 300))
        return body

    # ==================== Invoices & Payments ====================

    def list_invoices(self, collecto_id: str, client_id: str, user_token: str = None) -> List[Dict[str, Any]]:
        body = self._request(
            'GET', '/invoices',
            params={'clientId': client_id, 'collectoId': collecto_id},
            user_token=user_token
        )
        data = body.get('data') if isinstance(body, dict) else body
        return data if isinstance(data, list) else []

    def list_payments(self, collecto_id: str, client_id: str, user_token: str = None) -> List[Dict[str, Any]]:
        body = self._request(
            'GET', '/payments',
            params={'clientId': client_id, 'collectoId': collecto_id},
            user_token=user_token
        )
        data = body.get('data') if isinstance(body, dict) else body
        return data if isinstance(data, list) else []

    def create_invoice(
        self,
        items: List[Dict[str, Any]],
        amount,
        phone: str = None,
        pay_now: bool = None,
        user_token: str = None
    ) -> Dict[str, Any]:
        """
        Create an invoice for pay-later or pay-now checkout.

        Args:
            items: [{serviceId, serviceName, amount, quantity}, ...]
            amount: Invoice total
            phone: Mobile money number, needed for pay-now
            pay_now: Ask the partner to collect payment immediately
        """
        if not items or not isinstance(items, list):
            raise ValidationError('items are required', 'items')
        try:
            total = float(amount)
        except (TypeError, ValueError):
            raise ValidationError('amount must be a number', 'amount')

        payload = {'items': items, 'amount': total}
        if phone:
            payload['phone'] = phone
        if pay_now is not None:
            payload['payNow'] = 1 if pay_now else 0
        return self._request('POST', '/createInvoice', payload=payload, user_token=user_token)

    def get_invoice_details(self, invoice_id: str, user_token: str = None) -> Dict[str, Any]:
        if not invoice_id:
            raise ValidationError('invoiceId is required', 'invoice_id')
        return self._request('POST', '/invoiceDetails', payload={'invoiceId': invoice_id}, user_token=user_token)

    def request_to_pay(
        self,
        collecto_id: str,
        client_id: str,
        amount,
        phone: str,
        payment_option: str,
        reference: str,
        user_token: str = None
    ) -> Dict[str, Any]:
        """Ask the partner to collect a payment. Never retried here."""
        payload = {
            'collectoId': collecto_id,
            'clientId': client_id,
            'amount': float(amount),
            'phone': phone,
            'paymentOption': payment_option,
            'reference': reference,
        }
        return self._request('POST', '/requestToPay', payload=payload, user_token=user_token)

    def check_payment_status(self, transaction_id: str, user_token: str = None) -> Dict[str, Any]:
        if not transaction_id:
            raise ValidationError('transactionId is required', 'transaction_id')
        return self._request(
            'POST', '/requestToPayStatus',
            payload={'transactionId': transaction_id},
            user_token=user_token
        )

    # ==================== Phone Verification ====================

    def verify_phone(self, phone: str) -> Dict[str, Any]:
        """
        Look up the registered name behind a mobile money number.

        Falls back to an unverified placeholder when the partner is unavailable.
        """
        if not phone:
            raise ValidationError('phone is required', 'phone')
        try:
            return self._request('POST', '/verifyPhoneNumber', payload={'phone': phone})
        except UpstreamUnavailableError as e:
            logger.warning(f'Phone verification unavailable, using placeholder: {e.message}')
            return {
                'phone': phone,
                'verified': False,
                'name': None,
                'fallback': True
            }
