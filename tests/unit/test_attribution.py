"""Unit tests for attribution capture and resolution."""

import pytest

from pixpopup.attribution import (
    STORAGE_KEY,
    AttributionResolver,
    capture_utm_params,
    parse_cookie_header,
    parse_referrer,
)
from pixpopup.models import AttributionContext


@pytest.mark.unit
class TestCaptureUtmParams:

    def test_fbclid_without_source_is_facebook_ad(self):
        params = capture_utm_params("https://doe.example/?fbclid=IwAR1")
        assert params == {
            "fbclid": "IwAR1",
            "utm_source": "facebook",
            "utm_medium": "paid",
            "traffic_type": "ad",
        }

    def test_explicit_utm_tags(self):
        params = capture_utm_params(
            "https://doe.example/?utm_source=google&utm_medium=cpc&utm_campaign=natal&utm_term="
        )
        assert params["utm_source"] == "google"
        assert params["utm_campaign"] == "natal"
        assert params["traffic_type"] == "campaign"
        assert "utm_term" not in params

    def test_referrer_classification(self):
        params = capture_utm_params("https://doe.example/", "https://l.instagram.com/?u=x")
        assert params["utm_source"] == "instagram"
        assert params["utm_medium"] == "paid"
        assert params["traffic_type"] == "ad"
        assert params["referrer"] == "https://l.instagram.com/?u=x"

    def test_direct_when_nothing_known(self):
        params = capture_utm_params("https://doe.example/")
        assert params == {"utm_source": "direct", "utm_medium": "none", "traffic_type": "direct"}

    @pytest.mark.parametrize(
        "referrer,expected",
        [
            ("https://www.google.com.br/search?q=doar", ("google", "organic")),
            ("https://t.co/abc", ("twitter", "social")),
            ("https://news.ycombinator.com/item", ("news.ycombinator.com", "referral")),
            ("https://www.blog.example/post", ("blog.example", "referral")),
            ("", None),
            ("not a url", None),
        ],
    )
    def test_parse_referrer(self, referrer, expected):
        assert parse_referrer(referrer) == expected


@pytest.mark.unit
class TestAttributionResolver:

    def test_attribution_is_sticky(self, resolver):
        resolver.capture("https://doe.example/?utm_source=facebook&utm_campaign=natal")
        resolver.reset()

        context = resolver.capture("https://doe.example/obrigado")

        assert context.source == "facebook"
        assert context.utm_params["utm_campaign"] == "natal"

    def test_new_real_source_overrides(self, resolver):
        resolver.capture("https://doe.example/?utm_source=facebook&utm_campaign=natal")

        context = resolver.capture("https://doe.example/?utm_source=google")

        assert context.source == "google"

    def test_direct_visits_are_not_persisted(self, resolver, store):
        resolver.capture("https://doe.example/")
        assert store.get(STORAGE_KEY) is None

    def test_cookies_fill_click_ids(self, resolver):
        context = resolver.capture(
            "https://doe.example/?fbclid=abc",
            cookies={"_fbc": "fb.1.1.abc", "_fbp": "fb.1.1.99", "other": "x"},
        )
        assert context.click_id == "fb.1.1.abc"
        assert context.browser_id == "fb.1.1.99"

    def test_landing_url_kept_from_first_capture(self, resolver):
        resolver.capture("https://doe.example/?utm_source=facebook")
        context = resolver.capture("https://doe.example/pagina-2")
        assert context.landing_url == "https://doe.example/?utm_source=facebook"

    def test_explicit_context_wins(self, resolver):
        resolver.capture("https://doe.example/?utm_source=google")
        explicit = AttributionContext(utm_params={"utm_source": "newsletter"})

        assert resolver.resolve(explicit).source == "newsletter"

    def test_empty_explicit_falls_through(self, resolver):
        resolver.capture("https://doe.example/?utm_source=google")

        assert resolver.resolve(AttributionContext()).source == "google"

    def test_storage_used_on_fresh_process(self, store):
        AttributionResolver(store=store).capture("https://doe.example/?utm_source=tiktok")

        assert AttributionResolver(store=store).resolve().source == "tiktok"

    def test_empty_when_nothing_known(self, resolver):
        context = resolver.resolve()
        assert context.is_empty
        assert context.source is None

    def test_first_resolution_persisted(self, resolver, store):
        resolver.resolve(AttributionContext(utm_params={"utm_source": "email"}))

        stored = AttributionContext.model_validate_json(store.get(STORAGE_KEY))
        assert stored.source == "email"

    def test_corrupt_storage_ignored(self, resolver, store):
        store.set(STORAGE_KEY, "{not json")
        assert resolver.resolve().is_empty


@pytest.mark.unit
def test_parse_cookie_header():
    assert parse_cookie_header("_fbp=fb.1.2.3; _fbc=fb.1.2.abc") == {"_fbp": "fb.1.2.3", "_fbc": "fb.1.2.abc"}
    assert parse_cookie_header(None) == {}
