"""
Tenant resolution and tenant-aware URL building.

In production every company lives on its own subdomain
(abc-shop.aoowarranty.com). In development everything runs on one host and
the company is the first path segment (localhost:3000/abc-shop/admin).

Everything here is a plain function of its inputs. Nothing raises for odd
hostnames or paths; the worst case is "no tenant" (the marketing site).
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence
from urllib.parse import urlsplit

from starlette.datastructures import Headers

from config import settings

logger = logging.getLogger(__name__)

# "No tenant": main site, company registration, platform pages
NO_TENANT = None

# First path segments that are routes of the app itself, never a company slug
RESERVED_PATH_SEGMENTS = frozenset({
    "api", "_next", "register", "super-admin", "admin", "favicon.ico",
    "robots.txt", "test", "docs", "redoc", "openapi.json", "health", "static",
})

SLUG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]*$")
IPV4_PATTERN = re.compile(r"^\d{1,3}(\.\d{1,3}){3}$")
ADMIN_REFERER_PATTERN = re.compile(r"^/([^/]+)/admin(?:/|$)")


def clean_slug(value: Any) -> Optional[str]:
    """Normalize a candidate slug, or return NO_TENANT if it cannot be one."""
    if not isinstance(value, str):
        return NO_TENANT
    candidate = value.strip().lower()
    if not candidate or candidate in RESERVED_PATH_SEGMENTS or "." in candidate:
        return NO_TENANT
    if not SLUG_PATTERN.match(candidate):
        return NO_TENANT
    return candidate


def create_slug(text: str) -> str:
    """Company name -> slug candidate. "ABC Shop!" -> "abc-shop" (non-latin text yields "")."""
    slug = (text or "").strip().lower()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def is_valid_company_slug(slug: str) -> bool:
    """Slugs a new company may register: 3-50 chars of a-z, 0-9 and '-', not an app route."""
    return bool(
        slug
        and 3 <= len(slug) <= 50
        and SLUG_PATTERN.match(slug)
        and slug not in RESERVED_PATH_SEGMENTS
        and slug != "www"
    )


def tenant_from_host(hostname: Optional[str]) -> Optional[str]:
    """
    Production rule: the first label of a host with at least three labels.

    Examples:
      - abc-shop.aoowarranty.com -> abc-shop
      - www.aoowarranty.com      -> None (main site)
      - aoowarranty.com          -> None
      - localhost:3000           -> None
    """
    if not hostname or not isinstance(hostname, str):
        return NO_TENANT

    host = hostname.strip().lower().split(":")[0]
    if IPV4_PATTERN.match(host):
        return NO_TENANT

    labels = host.split(".")
    if len(labels) < 3 or labels[0] == "www":
        return NO_TENANT
    return clean_slug(labels[0])


def tenant_from_path(pathname: Optional[str]) -> Optional[str]:
    """Development rule: first path segment unless it is one of the app's own routes."""
    if not pathname or not isinstance(pathname, str):
        return NO_TENANT

    path = pathname.split("?", 1)[0]
    segments = [segment for segment in path.split("/") if segment]
    if not segments:
        return NO_TENANT
    return clean_slug(segments[0])


def resolve_tenant(hostname: Optional[str], pathname: Optional[str], is_production: bool) -> Optional[str]:
    if is_production:
        return tenant_from_host(hostname)
    return tenant_from_path(pathname)


def strip_tenant_prefix(pathname: str, tenant: Optional[str]) -> str:
    """/abc-shop/admin/brands -> /admin/brands"""
    if not tenant:
        return pathname
    prefix = f"/{tenant}"
    if pathname == prefix:
        return "/"
    if pathname.startswith(prefix + "/"):
        return pathname[len(prefix):]
    return pathname


def clean_duplicate_tenant(url: str, tenant: Optional[str]) -> str:
    """/abc-shop/abc-shop/admin -> /abc-shop/admin"""
    if not tenant:
        return url
    path, sep, query = url.partition("?")
    segments = []
    for segment in path.split("/"):
        # Whole segments only: /ab/abc is not a doubled /ab
        if segment == tenant and segments and segments[-1] == tenant:
            continue
        segments.append(segment)
    return "/".join(segments) + sep + query


# ==================== URL BUILDERS ====================

def tenant_path(path: str, tenant: Optional[str], is_production: bool) -> str:
    """Path as seen by the browser: prefixed with the slug only in development."""
    if not path.startswith("/"):
        path = "/" + path
    if is_production or not tenant:
        return path
    return clean_duplicate_tenant(f"/{tenant}{path}", tenant)


def admin_path(path: str, tenant: Optional[str], is_production: bool) -> str:
    if path and not path.startswith("/"):
        path = "/" + path
    return tenant_path(f"/admin{path}", tenant, is_production)


def customer_path(path: str, tenant: Optional[str], is_production: bool) -> str:
    return tenant_path(path or "/", tenant, is_production)


def absolute_url(
    path: str,
    tenant: Optional[str],
    *,
    is_production: bool,
    app_domain: str,
    dev_base_url: str,
) -> str:
    """
    Full URL for a tenant page.

    production:  https://abc-shop.aoowarranty.com/admin
    development: http://localhost:3000/abc-shop/admin
    """
    if not path.startswith("/"):
        path = "/" + path
    if is_production:
        host = f"{tenant}.{app_domain}" if tenant else app_domain
        return f"https://{host}{path}"
    return dev_base_url.rstrip("/") + tenant_path(path, tenant, is_production=False)


def login_redirect_url(tenant: Optional[str], *, is_production: bool, app_domain: str, dev_base_url: str) -> str:
    return absolute_url(
        "/admin/login", tenant,
        is_production=is_production, app_domain=app_domain, dev_base_url=dev_base_url,
    )


def urls_for(tenant: Optional[str]) -> dict:
    """Absolute admin/customer/login URLs for a tenant under the current settings."""
    options = dict(
        is_production=settings.is_production,
        app_domain=settings.APP_DOMAIN,
        dev_base_url=settings.APP_URL,
    )
    return {
        "customerUrl": absolute_url("/", tenant, **options),
        "adminUrl": absolute_url("/admin", tenant, **options),
        "loginUrl": login_redirect_url(tenant, **options),
        "registerUrl": absolute_url("/register", tenant, **options),
    }


# ==================== REQUEST STRATEGIES ====================

@dataclass(frozen=True)
class RequestContext:
    """The parts of an inbound request tenant strategies are allowed to look at."""
    headers: Mapping[str, str]
    body: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_request(cls, request, body: Optional[Mapping[str, Any]] = None) -> "RequestContext":
        return cls(headers=request.headers, body=body or {})


def from_tenant_header(ctx: RequestContext) -> Optional[str]:
    """x-tenant, set by TenantMiddleware or by the reverse proxy"""
    return clean_slug(ctx.headers.get("x-tenant"))


def from_request_body(ctx: RequestContext) -> Optional[str]:
    """Client-side calls that bypass the proxy send the slug explicitly"""
    return clean_slug(ctx.body.get("tenant")) if isinstance(ctx.body, Mapping) else NO_TENANT


def from_host_header(ctx: RequestContext) -> Optional[str]:
    return tenant_from_host(ctx.headers.get("x-forwarded-host") or ctx.headers.get("host"))


def from_referer(ctx: RequestContext) -> Optional[str]:
    """Last resort: the page the request came from (/abc-shop/admin/... or a tenant subdomain)."""
    referer = ctx.headers.get("referer")
    if not referer:
        return NO_TENANT
    try:
        parts = urlsplit(referer)
    except ValueError:
        return NO_TENANT

    match = ADMIN_REFERER_PATTERN.match(parts.path or "")
    if match:
        slug = clean_slug(match.group(1))
        if slug:
            return slug
    return tenant_from_host(parts.netloc)


TenantStrategy = Callable[[RequestContext], Optional[str]]

# Tried in order, first hit wins. The header is authoritative because the
# middleware/proxy derived it from the URL; the body covers direct API calls;
# the host covers production calls that skipped the proxy; the referer is a
# fallback for browsers posting from a tenant page.
TENANT_STRATEGIES: Sequence[TenantStrategy] = (
    from_tenant_header,
    from_request_body,
    from_host_header,
    from_referer,
)


def resolve_request_tenant(ctx: RequestContext, strategies: Sequence[TenantStrategy] = TENANT_STRATEGIES) -> Optional[str]:
    for strategy in strategies:
        slug = strategy(ctx)
        if slug:
            return slug
    return NO_TENANT


def describe_resolution(ctx: RequestContext, strategies: Sequence[TenantStrategy] = TENANT_STRATEGIES) -> dict:
    """Per-strategy results, returned as a debug object outside production."""
    return {strategy.__name__: strategy(ctx) for strategy in strategies}


# ==================== MIDDLEWARE ====================

class TenantMiddleware:
    """
    Resolve the tenant of every HTTP request from its URL.

    Stores the slug on ``request.state.tenant``, adds an ``x-tenant`` header
    when the client did not send one, and in development drops the slug
    prefix from the path so /abc-shop/api/brands is routed as /api/brands.
    """

    def __init__(self, app, is_production: Optional[bool] = None):
        self.app = app
        self.is_production = is_production

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        is_production = settings.is_production if self.is_production is None else self.is_production
        headers = Headers(scope=scope)
        path = scope.get("path", "/")
        tenant = resolve_tenant(headers.get("host"), path, is_production)

        if tenant:
            scope = dict(scope)
            if not is_production:
                stripped = strip_tenant_prefix(path, tenant)
                scope["path"] = stripped
                scope["raw_path"] = stripped.encode()

            state = dict(scope.get("state") or {})
            state["tenant"] = tenant
            scope["state"] = state

            if "x-tenant" not in headers:
                scope["headers"] = [*scope["headers"], (b"x-tenant", tenant.encode())]

        await self.app(scope, receive, send)
