"""Google Safe Browsing v4 lookups for WebFetch URLs."""

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from toolgate import __version__
from toolgate.core.errors import SafeBrowsingError
from toolgate.utils.log import NULL_LOGGER, LoggerLike


SAFE_BROWSING_ENDPOINT = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
SAFE_BROWSING_TIMEOUT = 5.0
CLIENT_ID = "toolgate"
THREAT_TYPES = (
    "MALWARE",
    "SOCIAL_ENGINEERING",
    "UNWANTED_SOFTWARE",
    "POTENTIALLY_HARMFUL_APPLICATION",
)


@dataclass(frozen=True)
class SafeBrowsingVerdict:
    safe: bool
    threat_type: str = ""


def build_request(url: str) -> dict[str, Any]:
    return {
        "client": {"clientId": CLIENT_ID, "clientVersion": __version__},
        "threatInfo": {
            "threatTypes": list(THREAT_TYPES),
            "platformTypes": ["ANY_PLATFORM"],
            "threatEntryTypes": ["URL"],
            "threatEntries": [{"url": url}],
        },
    }


def check_url(
    url: str,
    api_key: str,
    *,
    endpoint: str = SAFE_BROWSING_ENDPOINT,
    timeout: float = SAFE_BROWSING_TIMEOUT,
    transport: Optional[httpx.BaseTransport] = None,
    logger: LoggerLike = NULL_LOGGER,
) -> SafeBrowsingVerdict:
    """Ask Safe Browsing whether ``url`` is on a threat list.

    One POST, no retries.

    Raises:
        SafeBrowsingError: when the lookup is inconclusive (transport
            failure, non-200 status or an undecodable body).
    """
    try:
        with httpx.Client(timeout=timeout, transport=transport) as client:
            response = client.post(
                endpoint,
                params={"key": api_key},
                json=build_request(url),
                headers={"Content-Type": "application/json"},
            )
    except httpx.HTTPError as exc:
        logger.warning(
            "[safebrowsing] Request failed: %s: %s",
            type(exc).__name__,
            exc,
            extra={"url": url},
        )
        raise SafeBrowsingError(f"safe browsing request: {exc}") from exc

    if not response.is_success:
        raise SafeBrowsingError(f"safe browsing API returned {response.status_code}")

    try:
        payload = response.json()
    except ValueError as exc:
        raise SafeBrowsingError(f"decode response: {exc}") from exc
    if not isinstance(payload, dict):
        raise SafeBrowsingError("decode response: unexpected payload")

    matches = payload.get("matches") or []
    if matches:
        first = matches[0] if isinstance(matches[0], dict) else {}
        threat_type = str(first.get("threatType", "UNKNOWN"))
        logger.debug(
            "[safebrowsing] URL flagged", extra={"url": url, "threat_type": threat_type}
        )
        return SafeBrowsingVerdict(safe=False, threat_type=threat_type)
    return SafeBrowsingVerdict(safe=True)
