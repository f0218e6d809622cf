from __future__ import annotations

import json
import logging
from urllib import error as urlerror
from urllib import request as urlrequest

from app.core.config import settings
from app.services.entitlements import NotificationKind

logger = logging.getLogger(__name__)

VALID_PROVIDERS = {"none", "log", "sendgrid"}


def _template_ids() -> dict[NotificationKind, str | None]:
    return {
        NotificationKind.WARNING_48H: settings.EMAIL_TEMPLATE_RENTAL_WARNING_48H,
        NotificationKind.WARNING_24H: settings.EMAIL_TEMPLATE_RENTAL_WARNING_24H,
        NotificationKind.EXPIRED: settings.EMAIL_TEMPLATE_RENTAL_EXPIRED,
    }


def current_provider_code() -> str:
    code = (settings.EMAIL_PROVIDER or "none").strip().lower()
    return code if code in VALID_PROVIDERS else "none"


def _http_json_post(url: str, payload: dict, *, headers: dict[str, str] | None = None) -> int:
    req_headers = {"Content-Type": "application/json"}
    if headers:
        req_headers.update(headers)
    body = json.dumps(payload).encode("utf-8")
    req = urlrequest.Request(url=url, method="POST", data=body, headers=req_headers)
    with urlrequest.urlopen(req, timeout=20) as resp:
        return int(resp.status)


def _sendgrid_payload(address: str, template_id: str, template_data: dict) -> dict:
    return {
        "personalizations": [{"to": [{"email": address}], "dynamic_template_data": template_data}],
        "from": {"email": settings.EMAIL_FROM_ADDRESS, "name": settings.EMAIL_FROM_NAME},
        "template_id": template_id,
    }


def send_notification(address: str, kind: NotificationKind | str, template_data: dict | None = None) -> bool:
    """Send one notification email. Returns True only when the email service accepted it.

    Failures are logged and reported as False, never raised, so one bad
    address or an outage does not stop a sweep.
    """
    kind = NotificationKind(kind)
    data = dict(template_data or {})
    provider = current_provider_code()

    if provider == "none":
        logger.info("email provider not configured, %s for %s not sent", kind.value, address)
        return False
    if provider == "log":
        logger.info("email %s to %s data=%s", kind.value, address, data)
        return True

    template_id = _template_ids()[kind]
    if not template_id:
        logger.warning("email template for %s is not configured, skipping %s", kind.value, address)
        return False
    if not settings.SENDGRID_API_KEY:
        logger.warning("SENDGRID_API_KEY is not configured, skipping %s to %s", kind.value, address)
        return False

    try:
        status = _http_json_post(
            settings.SENDGRID_API_URL,
            _sendgrid_payload(address, template_id, data),
            headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        )
    except urlerror.HTTPError as exc:
        logger.warning("sendgrid rejected %s to %s: HTTP %s", kind.value, address, exc.code)
        return False
    except (urlerror.URLError, TimeoutError) as exc:
        logger.warning("sendgrid unreachable for %s to %s: %s", kind.value, address, exc)
        return False

    if status >= 300:
        logger.warning("sendgrid returned HTTP %s for %s to %s", status, kind.value, address)
        return False
    return True
