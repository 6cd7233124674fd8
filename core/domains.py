"""Tenant resolution from an inbound request's host and path.

Every caller that needs to know which store a request belongs to goes through
``resolve_tenant_identifiers``. The result is an ordered tuple of lookup
candidates for the tenant directory, highest priority first:

1. the full host, matched against store custom domains;
2. the leftmost label of a ``<label>.<base domain>`` host, matched against
   store subdomains;
3. on the bare platform domain, the leading path segment as a slug, unless
   it is a reserved top-level route.

An empty tuple means the request is platform-level (no tenant).
"""

import re
from typing import Iterable, Optional, Tuple

from core.config import settings

_SUBDOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$")

# Names a store may never claim as its subdomain
RESERVED_SUBDOMAIN_NAMES = frozenset({
    "www", "api", "admin", "superadmin", "app", "mail", "smtp", "ftp",
    "cdn", "static", "assets", "blog", "help", "support", "docs",
    "dashboard", "login", "register", "signin", "signup", "test",
    "dev", "staging", "prod", "production", "preview",
})


def normalize_host(host: Optional[str]) -> str:
    """Lowercase a Host header value and drop its port and trailing dot."""
    if not host:
        return ""
    host = host.strip().lower()
    if host.startswith("["):
        # IPv6 literal, e.g. [::1]:8000
        end = host.find("]")
        return host[: end + 1] if end != -1 else host
    host = host.split(":", 1)[0]
    return host.rstrip(".")


def first_path_segment(path: Optional[str]) -> str:
    if not path:
        return ""
    path = path.split("?", 1)[0].split("#", 1)[0]
    for segment in path.split("/"):
        if segment:
            return segment.lower()
    return ""


def _split_platform_host(host: str, base_domains: Iterable[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return (base, label) when host is a platform host.

    ``label`` is None for the bare base domain and the label left of the base
    otherwise. ``base`` is None when the host is not a platform host at all.
    """
    for base in base_domains:
        if not base:
            continue
        if host == base:
            return base, None
        suffix = "." + base
        if host.endswith(suffix):
            return base, host[: -len(suffix)]
    return None, None


def resolve_tenant_identifiers(
    host: Optional[str],
    path: Optional[str] = None,
    *,
    base_domain: Optional[str] = None,
    aliases: Optional[Iterable[str]] = None,
    reserved_routes: Optional[Iterable[str]] = None,
    reserved_subdomains: Optional[Iterable[str]] = None,
) -> Tuple[str, ...]:
    base_domain = (base_domain or settings.PLATFORM_BASE_DOMAIN).lower()
    aliases = [a.lower() for a in (settings.PLATFORM_ALIASES if aliases is None else aliases)]
    reserved_routes = set(settings.RESERVED_ROUTES if reserved_routes is None else reserved_routes)
    reserved_subdomains = set(settings.RESERVED_SUBDOMAINS if reserved_subdomains is None else reserved_subdomains)

    host = normalize_host(host)
    if not host:
        return ()

    base, label = _split_platform_host(host, [base_domain, *aliases])

    if base is None:
        # Not ours, so it can only be a custom domain
        return (host,)

    if label is not None and label != "www":
        if label in reserved_subdomains:
            return ()
        if "." in label:
            # Nested labels are never store subdomains, only exact custom domains
            return (host,)
        if base == base_domain:
            return (host, label)
        # Local development, e.g. acme.localhost
        return (label,)

    segment = first_path_segment(path)
    if not segment or segment in reserved_routes:
        return ()
    return (segment,)


def resolve_tenant_identifier(host: Optional[str], path: Optional[str] = None, **kwargs) -> Optional[str]:
    """Return the highest-priority tenant identifier, or None for platform requests."""
    candidates = resolve_tenant_identifiers(host, path, **kwargs)
    return candidates[0] if candidates else None


def is_valid_subdomain(subdomain: str) -> bool:
    # 3-63 characters, lowercase alphanumeric and hyphens, alphanumeric at both ends
    return bool(_SUBDOMAIN_RE.match(subdomain or ""))


def is_reserved_subdomain(subdomain: str) -> bool:
    name = (subdomain or "").lower()
    return name in RESERVED_SUBDOMAIN_NAMES or name in settings.RESERVED_SUBDOMAINS


def is_reserved_route(slug: str) -> bool:
    """Slugs equal to a platform route can never be reached by path."""
    return (slug or "").strip().lower() in settings.RESERVED_ROUTES


def build_store_url(subdomain: Optional[str], custom_domain: Optional[str] = None) -> str:
    scheme = settings.PLATFORM_SCHEME
    if custom_domain:
        return f"{scheme}://{custom_domain}"
    if subdomain:
        return f"{scheme}://{subdomain}.{settings.PLATFORM_BASE_DOMAIN}"
    return f"{scheme}://{settings.PLATFORM_BASE_DOMAIN}"
