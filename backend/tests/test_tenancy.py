# Tenant resolution rules and URL building (no database)

import pytest

from tenancy import (
    RequestContext, absolute_url, admin_path, clean_duplicate_tenant, create_slug,
    customer_path, describe_resolution, is_valid_company_slug, resolve_request_tenant,
    resolve_tenant, strip_tenant_prefix, tenant_from_host, tenant_from_path,
)


class TestHostRule:

    @pytest.mark.parametrize("host,expected", [
        ("abc-shop.aoowarranty.com", "abc-shop"),
        ("ABC-Shop.aoowarranty.com:443", "abc-shop"),
        ("www.aoowarranty.com", None),
        ("aoowarranty.com", None),
        ("localhost:3000", None),
        ("192.168.1.10", None),
        ("", None),
        (None, None),
    ])
    def test_tenant_from_host(self, host, expected):
        assert tenant_from_host(host) == expected


class TestPathRule:

    @pytest.mark.parametrize("path,expected", [
        ("/abc-shop/admin", "abc-shop"),
        ("/abc-shop", "abc-shop"),
        ("/abc-shop?tab=brands", "abc-shop"),
        ("/api/brands", None),
        ("/register", None),
        ("/admin/login", None),
        ("/favicon.ico", None),
        ("/test", None),
        ("/", None),
    ])
    def test_tenant_from_path(self, path, expected):
        assert tenant_from_path(path) == expected

    def test_resolve_tenant_picks_rule_by_environment(self):
        assert resolve_tenant("abc-shop.aoowarranty.com", "/xyz-store/admin", True) == "abc-shop"
        assert resolve_tenant("abc-shop.aoowarranty.com", "/xyz-store/admin", False) == "xyz-store"


class TestPathHelpers:

    def test_strip_prefix(self):
        assert strip_tenant_prefix("/abc-shop/api/brands", "abc-shop") == "/api/brands"
        assert strip_tenant_prefix("/abc-shop", "abc-shop") == "/"

    def test_strip_prefix_needs_whole_segment(self):
        assert strip_tenant_prefix("/abc-shopping/admin", "abc-shop") == "/abc-shopping/admin"
        assert strip_tenant_prefix("/api/brands", None) == "/api/brands"

    def test_clean_duplicate(self):
        assert clean_duplicate_tenant("/abc-shop/abc-shop/admin", "abc-shop") == "/abc-shop/admin"
        assert clean_duplicate_tenant("/abc-shop/abc-shop", "abc-shop") == "/abc-shop"

    @pytest.mark.parametrize("url,expected", [
        ("/ab/abc/ab/ab/", "/ab/abc/ab/"),
        ("/ab/abc/admin", "/ab/abc/admin"),
        ("/ab/ab/ab/admin", "/ab/admin"),
        ("/abc/ab/ab", "/abc/ab"),
        ("/ab/ab/admin?next=/ab/ab", "/ab/admin?next=/ab/ab"),
    ])
    def test_clean_duplicate_matches_whole_segments(self, url, expected):
        assert clean_duplicate_tenant(url, "ab") == expected

    def test_admin_and_customer_paths(self):
        assert admin_path("/brands", "abc-shop", False) == "/abc-shop/admin/brands"
        assert admin_path("brands", "abc-shop", True) == "/admin/brands"
        assert admin_path("", "abc-shop", False) == "/abc-shop/admin"
        assert customer_path("/register", "abc-shop", False) == "/abc-shop/register"
        assert customer_path("", "abc-shop", True) == "/"

    def test_absolute_url(self):
        options = dict(app_domain="aoowarranty.com", dev_base_url="http://localhost:3000/")
        assert absolute_url("/admin", "abc-shop", is_production=True, **options) == "https://abc-shop.aoowarranty.com/admin"
        assert absolute_url("/admin", "abc-shop", is_production=False, **options) == "http://localhost:3000/abc-shop/admin"
        assert absolute_url("/", None, is_production=True, **options) == "https://aoowarranty.com/"


class TestSlugs:

    @pytest.mark.parametrize("slug", ["abc-shop", "shop123", "a1b"])
    def test_valid(self, slug):
        assert is_valid_company_slug(slug)

    @pytest.mark.parametrize("slug", ["ab", "a" * 51, "Abc-shop", "-abc", "abc_shop", "admin", "api", "www", ""])
    def test_invalid(self, slug):
        assert not is_valid_company_slug(slug)

    def test_create_slug(self):
        assert create_slug("ABC Shop!") == "abc-shop"
        assert create_slug("  Hello   World  ") == "hello-world"
        assert create_slug("ร้านไทย") == ""


class TestRequestStrategies:

    def test_header_wins(self):
        ctx = RequestContext(
            headers={"x-tenant": "abc-shop", "host": "xyz-store.aoowarranty.com"},
            body={"tenant": "other-shop"},
        )
        assert resolve_request_tenant(ctx) == "abc-shop"

    def test_body_before_host(self):
        ctx = RequestContext(headers={"host": "xyz-store.aoowarranty.com"}, body={"tenant": "abc-shop"})
        assert resolve_request_tenant(ctx) == "abc-shop"

    def test_host(self):
        ctx = RequestContext(headers={"host": "xyz-store.aoowarranty.com"})
        assert resolve_request_tenant(ctx) == "xyz-store"

    def test_referer(self):
        ctx = RequestContext(headers={"host": "localhost:8000", "referer": "http://localhost:3000/abc-shop/admin/login"})
        assert resolve_request_tenant(ctx) == "abc-shop"

    def test_reserved_header_value_is_ignored(self):
        ctx = RequestContext(headers={"x-tenant": "api", "host": "localhost:8000"})
        assert resolve_request_tenant(ctx) is None

    def test_describe_resolution(self):
        ctx = RequestContext(headers={"host": "localhost:8000"}, body={"tenant": "abc-shop"})
        assert describe_resolution(ctx) == {
            "from_tenant_header": None,
            "from_request_body": "abc-shop",
            "from_host_header": None,
            "from_referer": None,
        }
