"""Inviter resolution for burn and subscription transactions.

Candidates are tried in a fixed order and the first well-formed, non-zero
address wins:

1. inviter already bound on-chain (permanent, the contract rejects others)
2. address typed in by the user (burn flow only)
3. ``ref`` query parameter of the page the user arrived from
4. the protocol's root inviter
5. the zero address
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlencode, urlsplit

from eth_utils import is_address, to_checksum_address

from flapburn.core.constants import ZERO_ADDRESS
from flapburn.core.constants.base import REFERRAL_QUERY_PARAM


def normalize_candidate(value: str | None) -> str | None:
    """Checksum ``value`` if it is a usable inviter, else ``None``."""
    if value is None:
        return None
    text = str(value).strip()
    if not text or not is_address(text):
        return None
    if int(text, 16) == 0:
        return None
    return to_checksum_address(text)


def resolve_inviter(
    *,
    onchain_inviter: str | None = None,
    manual_inviter: str | None = None,
    url_inviter: str | None = None,
    root_inviter: str | None = None,
) -> str:
    for candidate in (onchain_inviter, manual_inviter, url_inviter, root_inviter):
        resolved = normalize_candidate(candidate)
        if resolved is not None:
            return resolved
    return ZERO_ADDRESS


def inviter_from_url(url_or_query: str | None, param: str = REFERRAL_QUERY_PARAM) -> str | None:
    """Extract a well-formed referral address from a URL or bare query string."""
    if not url_or_query:
        return None
    text = str(url_or_query).strip()
    query = urlsplit(text).query if ("?" in text or "://" in text) else text
    values = parse_qs(query.lstrip("?")).get(param) or []
    for value in values:
        resolved = normalize_candidate(value)
        if resolved is not None:
            return resolved
    return None


def referral_link(base_url: str, address: str, param: str = REFERRAL_QUERY_PARAM) -> str:
    resolved = normalize_candidate(address)
    if resolved is None:
        raise ValueError(f"Invalid referral address: {address}")
    return f"{base_url.rstrip('/')}?{urlencode({param: resolved})}"
