# api/oddsraiders/services/payfast.py
from __future__ import annotations

import hashlib
import hmac
import ipaddress
import logging
from typing import Iterable, Mapping, Optional, Tuple
from urllib.parse import quote_plus, urlencode

from ..errors import VerificationError
from ..models import PaymentStatus, User
from ..settings import settings
from .subscriptions import OpenedSubscription

logger = logging.getLogger("oddsraiders.webhook")

# ITN payment_status -> our PaymentStatus. Anything unknown is treated as still pending.
STATUS_MAP = {
    "COMPLETE": PaymentStatus.COMPLETED,
    "FAILED": PaymentStatus.FAILED,
    "CANCELLED": PaymentStatus.CANCELLED,
    "PENDING": PaymentStatus.PENDING,
}


def map_payment_status(raw: str) -> PaymentStatus:
    return STATUS_MAP.get((raw or "").strip().upper(), PaymentStatus.PENDING)


def build_payment_url(opened: OpenedSubscription, user: Optional[User] = None) -> str:
    """Hosted-checkout redirect for one subscription payment."""
    params = {
        "merchant_id": settings.PAYFAST_MERCHANT_ID,
        "merchant_key": settings.PAYFAST_MERCHANT_KEY,
        "return_url": settings.PAYFAST_RETURN_URL,
        "cancel_url": settings.PAYFAST_CANCEL_URL,
        "notify_url": settings.PAYFAST_NOTIFY_URL,
        "email_address": user.email if user else None,
        "m_payment_id": opened.internal_reference,
        "amount": f"{opened.amount:.2f}",
        "item_name": settings.SUBSCRIPTION_ITEM_NAME,
    }
    # PayFast rejects blank fields, so drop them rather than send ""
    fields = [(k, v) for k, v in params.items() if v]
    if settings.PAYFAST_PASSPHRASE:
        fields.append(("signature", signature(fields, settings.PAYFAST_PASSPHRASE)))
    query = urlencode(fields)
    return f"{settings.PAYFAST_PROCESS_URL}?{query}"


def signature(fields: Iterable[Tuple[str, str]], passphrase: str = "") -> str:
    """PayFast MD5 signature: `k=quote_plus(v)` pairs in the given order, passphrase last."""
    pairs = [(k, v) for k, v in fields if k != "signature"]
    if passphrase:
        pairs.append(("passphrase", passphrase))
    raw = "&".join(f"{k}={quote_plus(str(v).strip())}" for k, v in pairs)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


def _networks(entries: Iterable[str], setting: str) -> list:
    nets = []
    for entry in entries:
        try:
            nets.append(ipaddress.ip_network(entry.strip(), strict=False))
        except ValueError:
            logger.warning("ignoring %s entry %r (not an IP or CIDR)", setting, entry)
    return nets


def _in_any(addr: Optional[str], nets) -> bool:
    try:
        ip = ipaddress.ip_address((addr or "").strip())
    except ValueError:
        return False
    return any(ip in net for net in nets)


def resolve_source_address(
    peer: Optional[str],
    forwarded_for: Optional[str],
    trusted_proxies: Iterable[str] = (),
) -> Optional[str]:
    """
    The address the notification really came from.

    X-Forwarded-For is only read when the TCP peer is a trusted proxy, and
    then from the right: the first hop that is not a trusted proxy wins.
    """
    nets = _networks(trusted_proxies, "TRUSTED_PROXIES")
    if not nets or not forwarded_for or not _in_any(peer, nets):
        return peer
    hops = [h.strip() for h in forwarded_for.split(",") if h.strip()]
    for hop in reversed(hops):
        if not _in_any(hop, nets):
            return hop
    return hops[0] if hops else peer


# ---------------- Notification verification ----------------

class NotificationVerifier:
    """Decides whether a notification really came from the provider.

    verify() returns None when satisfied and raises VerificationError otherwise.
    """

    def verify(self, form: Mapping[str, str], remote_addr: Optional[str]) -> None:
        raise NotImplementedError


class SourceAddressVerifier(NotificationVerifier):
    def __init__(self, allowed: Iterable[str]):
        self.networks = _networks(allowed, "PAYFAST_ALLOWED_HOSTS")

    def verify(self, form, remote_addr):
        if not remote_addr:
            raise VerificationError("no source address")
        try:
            addr = ipaddress.ip_address(remote_addr)
        except ValueError:
            raise VerificationError(f"unparseable source address {remote_addr!r}")
        if not any(addr in net for net in self.networks):
            raise VerificationError(f"source {remote_addr} not in allowed hosts")


class SignatureVerifier(NotificationVerifier):
    """Recomputes the ITN signature with the account passphrase, which never leaves the server."""

    def __init__(self, passphrase: str):
        if not passphrase:
            raise ValueError("SignatureVerifier needs a passphrase")
        self.passphrase = passphrase

    def verify(self, form, remote_addr):
        sent = (form.get("signature") or "").strip().lower()
        if not sent:
            raise VerificationError("missing signature")
        expected = signature(form.items(), self.passphrase)
        if not hmac.compare_digest(sent, expected):
            raise VerificationError("signature mismatch")


class MerchantVerifier(NotificationVerifier):
    """merchant_id is public (it is in every checkout URL): narrows, never authenticates."""

    def __init__(self, merchant_id: str):
        self.merchant_id = merchant_id

    def verify(self, form, remote_addr):
        if (form.get("merchant_id") or "") != self.merchant_id:
            raise VerificationError("merchant_id mismatch")


class AllOf(NotificationVerifier):
    """Every member must pass. With no members nothing passes."""

    def __init__(self, *verifiers: NotificationVerifier):
        self.verifiers = verifiers

    def verify(self, form, remote_addr):
        if not self.verifiers:
            raise VerificationError("no notification verifier configured")
        for v in self.verifiers:
            v.verify(form, remote_addr)


def build_verifier(
    allowed_hosts: Iterable[str] = (),
    passphrase: str = "",
    merchant_id: str = "",
) -> NotificationVerifier:
    """
    Origin and signature checks authenticate; the merchant check only narrows.
    Without at least one authenticating check every notification is rejected.
    """
    allowed_hosts = list(allowed_hosts)
    authenticating = []
    if allowed_hosts:
        authenticating.append(SourceAddressVerifier(allowed_hosts))
    if passphrase:
        authenticating.append(SignatureVerifier(passphrase))

    if not authenticating:
        logger.warning(
            "PayFast verification not configured (set PAYFAST_ALLOWED_HOSTS and/or "
            "PAYFAST_PASSPHRASE); every notification will be rejected"
        )
        return AllOf()

    checks = list(authenticating)
    if merchant_id:
        checks.append(MerchantVerifier(merchant_id))
    return AllOf(*checks)


def default_verifier() -> NotificationVerifier:
    return build_verifier(
        settings.PAYFAST_ALLOWED_HOSTS,
        settings.PAYFAST_PASSPHRASE,
        settings.PAYFAST_MERCHANT_ID,
    )
