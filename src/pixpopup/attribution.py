"""Campaign attribution capture and resolution.

Attribution is sticky for the session: once a real campaign source has been
seen, a later page load without UTM tags does not erase it.
"""

import json
from http.cookies import SimpleCookie
from typing import Dict, Iterable, Mapping, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

from pydantic import ValidationError

from .logging_utils import get_logger
from .models import AttributionContext
from .storage import SessionStore, default_session_store

logger = get_logger(__name__)

STORAGE_KEY = "pixpopup_utm_params"

URL_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term", "fbclid")

# Known referrer hosts -> (source, medium)
REFERRER_SOURCES: Dict[str, Tuple[str, str]] = {
    "facebook.com": ("facebook", "paid"),
    "fb.com": ("facebook", "paid"),
    "l.facebook.com": ("facebook", "paid"),
    "lm.facebook.com": ("facebook", "paid"),
    "m.facebook.com": ("facebook", "paid"),
    "web.facebook.com": ("facebook", "paid"),
    "business.facebook.com": ("facebook", "paid"),
    "instagram.com": ("instagram", "paid"),
    "l.instagram.com": ("instagram", "paid"),
    "google.com": ("google", "organic"),
    "google.com.br": ("google", "organic"),
    "twitter.com": ("twitter", "social"),
    "t.co": ("twitter", "social"),
    "x.com": ("twitter", "social"),
    "linkedin.com": ("linkedin", "social"),
    "youtube.com": ("youtube", "social"),
    "youtu.be": ("youtube", "social"),
    "tiktok.com": ("tiktok", "paid"),
    "pinterest.com": ("pinterest", "social"),
    "bing.com": ("bing", "organic"),
    "yahoo.com": ("yahoo", "organic"),
    "duckduckgo.com": ("duckduckgo", "organic"),
    "whatsapp.com": ("whatsapp", "social"),
    "web.whatsapp.com": ("whatsapp", "social"),
    "telegram.org": ("telegram", "social"),
    "t.me": ("telegram", "social"),
}


def parse_referrer(referrer: Optional[str]) -> Optional[Tuple[str, str]]:
    """Classify a referrer URL into (source, medium)."""
    if not referrer:
        return None

    hostname = (urlsplit(referrer).hostname or "").lower()
    if not hostname:
        return None

    if hostname in REFERRER_SOURCES:
        return REFERRER_SOURCES[hostname]

    # Subdomains of known hosts
    for domain, value in REFERRER_SOURCES.items():
        if hostname.endswith(f".{domain}"):
            return value

    return hostname.removeprefix("www."), "referral"


def capture_utm_params(url: Optional[str], referrer: Optional[str] = None) -> Dict[str, str]:
    """Read campaign tags from a page URL, falling back to the referrer.

    Args:
        url: The current page URL.
        referrer: The document referrer, if any.

    Returns:
        Tag mapping that always carries ``utm_source`` and ``traffic_type``.
    """
    query = parse_qs(urlsplit(url).query) if url else {}
    params = {key: query[key][0] for key in URL_PARAMS if query.get(key) and query[key][0]}

    if params.get("fbclid") and not params.get("utm_source"):
        params["utm_source"] = "facebook"
        params["utm_medium"] = "paid"
        params["traffic_type"] = "ad"
        return params

    if params.get("utm_source"):
        params["traffic_type"] = "campaign"
        return params

    referrer_data = parse_referrer(referrer)
    if referrer_data:
        source, medium = referrer_data
        params["utm_source"] = source
        params["utm_medium"] = medium
        params["referrer"] = referrer
        params["traffic_type"] = "ad" if medium == "paid" else "organic"
    else:
        params["utm_source"] = "direct"
        params["utm_medium"] = "none"
        params["traffic_type"] = "direct"

    return params


def has_real_source(params: Mapping[str, str]) -> bool:
    source = params.get("utm_source")
    return bool(source) and source != "direct"


def parse_cookie_header(header: Optional[str]) -> Dict[str, str]:
    """Parse a ``Cookie`` header into a plain dict."""
    if not header:
        return {}
    cookie = SimpleCookie()
    cookie.load(header)
    return {key: morsel.value for key, morsel in cookie.items()}


class AttributionResolver:
    """Resolves the attribution context every popup in a session reports with.

    Priority, first non-empty wins: an explicitly supplied context, the
    context captured earlier in this process, the persisted session copy.
    """

    def __init__(self, store: Optional[SessionStore] = None):
        self.store = store or default_session_store()
        self._context: Optional[AttributionContext] = None

    def capture(
        self,
        url: Optional[str],
        referrer: Optional[str] = None,
        cookies: Optional[Mapping[str, str]] = None,
        pixel_ids: Optional[Iterable[str]] = None,
    ) -> AttributionContext:
        """Capture attribution from a page load and merge it into the session.

        Args:
            url: Current page URL.
            referrer: Document referrer.
            cookies: Client cookies; ``_fbc`` and ``_fbp`` are read.
            pixel_ids: Pixel destinations configured for this page.

        Returns:
            The merged context, also kept in memory for later resolves.
        """
        cookies = cookies or {}
        previous = self._context if self._context and not self._context.is_empty else self._load()
        saved = dict(previous.utm_params) if previous else {}
        current = capture_utm_params(url, referrer)

        if has_real_source(current):
            merged = {**saved, **current}
        elif has_real_source(saved):
            merged = {**current, **saved}
        else:
            merged = {**saved, **current}

        context = AttributionContext(
            utm_params=merged,
            click_id=cookies.get("_fbc") or (previous.click_id if previous else None),
            browser_id=cookies.get("_fbp") or (previous.browser_id if previous else None),
            pixel_ids=list(pixel_ids) if pixel_ids is not None else (list(previous.pixel_ids) if previous else []),
            landing_url=(previous.landing_url if previous else None) or url,
        )
        self._context = context

        if has_real_source(merged):
            self._persist(context)

        logger.debug(f"Captured attribution source={context.source} traffic={merged.get('traffic_type')}")
        return context

    def resolve(self, explicit: Optional[AttributionContext] = None) -> AttributionContext:
        """Return the effective attribution context.

        The first non-empty resolution in a session is written to storage so
        a reopened popup still reports it.
        """
        if explicit is not None and not explicit.is_empty:
            context = explicit
        elif self._context is not None and not self._context.is_empty:
            context = self._context
        else:
            context = self._load() or AttributionContext()

        if not context.is_empty:
            if self._context is None or self._context.is_empty:
                self._context = context
            if self.store.get(STORAGE_KEY) is None:
                self._persist(context)

        return context

    def reset(self) -> None:
        """Forget the in-memory context (a new page load in the same session)."""
        self._context = None

    def _load(self) -> Optional[AttributionContext]:
        raw = self.store.get(STORAGE_KEY)
        if not raw:
            return None
        try:
            return AttributionContext.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Discarding unreadable stored attribution: {e}")
            return None

    def _persist(self, context: AttributionContext) -> None:
        self.store.set(STORAGE_KEY, context.model_dump_json())


# Global resolver shared by every popup in the process
resolver = AttributionResolver()
