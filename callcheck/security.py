import re
import logging
from typing import Any, Dict, Iterable, List, Mapping

from .config import Settings

logger = logging.getLogger(__name__)

ALWAYS_ALLOWED_METHODS = ("OPTIONS", "HEAD")


def _normalize_path(path: str) -> str:
    if len(path) > 1 and path.endswith("/"):
        return path.rstrip("/") or "/"
    return path or "/"


def _under_prefix(path: str, prefix: str) -> bool:
    return path.startswith(prefix) or (path + "/").startswith(prefix)


class AuthGuard:
    """Decides whether a request needs credentials and whether it carries any.

    Public routes always pass. Explicitly protected routes, and requests whose
    method is protected under a protected prefix, need a recognized header or
    cookie. Token verification belongs to whatever issues the session.
    """

    def __init__(
        self,
        enabled: bool = True,
        public_routes: Iterable[str] = (),
        public_prefixes: Iterable[str] = (),
        protected_routes: Iterable[str] = (),
        protected_prefixes: Iterable[str] = (),
        protected_methods: Iterable[str] = (),
        header_names: Iterable[str] = (),
        cookie_names: Iterable[str] = (),
    ):
        self.enabled = enabled
        self.public_routes = {_normalize_path(r) for r in public_routes}
        self.public_prefixes = list(public_prefixes)
        self.protected_routes = {_normalize_path(r) for r in protected_routes}
        self.protected_prefixes = list(protected_prefixes)
        self.protected_methods = {m.upper() for m in protected_methods}
        self.header_names = [h.lower() for h in header_names]
        self.cookie_names = list(cookie_names)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthGuard":
        return cls(
            enabled=settings.auth_guard_enabled,
            public_routes=settings.auth_public_routes,
            public_prefixes=settings.auth_public_prefixes,
            protected_routes=settings.auth_protected_routes,
            protected_prefixes=settings.auth_protected_prefixes,
            protected_methods=settings.auth_protected_methods,
            header_names=settings.auth_header_names,
            cookie_names=settings.auth_cookie_names,
        )

    def is_public(self, path: str) -> bool:
        path = _normalize_path(path)
        return path in self.public_routes or any(path.startswith(p) for p in self.public_prefixes)

    def requires_auth(self, method: str, path: str) -> bool:
        if not self.enabled:
            return False
        method = method.upper()
        if method in ALWAYS_ALLOWED_METHODS:
            return False

        path = _normalize_path(path)
        if self.is_public(path):
            return False
        if path in self.protected_routes:
            return True
        return method in self.protected_methods and any(_under_prefix(path, p) for p in self.protected_prefixes)

    def has_credentials(self, headers: Mapping[str, str], cookies: Mapping[str, str]) -> bool:
        for name in self.header_names:
            value = (headers.get(name) or "").strip()
            if not value:
                continue
            if value.lower().startswith("bearer"):
                value = value[6:].strip()
            if value:
                return True
        return any((cookies.get(name) or "").strip() for name in self.cookie_names)

    def allows(self, method: str, path: str, headers: Mapping[str, str], cookies: Mapping[str, str]) -> bool:
        if not self.requires_auth(method, path):
            return True
        if self.has_credentials(headers, cookies):
            return True
        logger.info(f"Rejected unauthenticated {method} {path}")
        return False


def wildcard_origin_regex(pattern: str) -> str:
    """Translate an origin pattern such as https://*.example.com into a regex"""
    pattern = pattern.strip().rstrip("/")
    if "://" in pattern:
        scheme, host = pattern.split("://", 1)
        scheme_regex = re.escape(scheme)
    else:
        scheme_regex, host = "https?", pattern
    host_regex = re.escape(host).replace(r"\*", r"[A-Za-z0-9-]+(?:\.[A-Za-z0-9-]+)*")
    return f"(?:{scheme_regex}://{host_regex}(?::\\d+)?)"


def cors_options(origins: List[str]) -> Dict[str, Any]:
    """Keyword arguments for CORSMiddleware from an allow-list of origins"""
    options = {"allow_methods": ["*"], "allow_headers": ["*"]}

    if "*" in origins:
        options.update(allow_origins=["*"], allow_credentials=False)
        return options

    exact = [o.strip().rstrip("/") for o in origins if "*" not in o]
    patterns = [wildcard_origin_regex(o) for o in origins if "*" in o]
    options.update(allow_origins=exact, allow_credentials=True)
    if patterns:
        options["allow_origin_regex"] = "|".join(patterns)
    return options
