from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.testclient import TestClient

from callcheck.config import Settings
from callcheck.security import AuthGuard, cors_options


class TestAuthGuard:
    def setup_method(self):
        self.guard = AuthGuard.from_settings(Settings(auth_protected_routes=["/api/stats"]))

    def test_public_routes_pass(self):
        assert not self.guard.requires_auth("GET", "/health")
        assert not self.guard.requires_auth("GET", "/")
        assert not self.guard.requires_auth("GET", "/static/app.js")

    def test_preflight_and_head_pass(self):
        assert not self.guard.requires_auth("OPTIONS", "/api/admin/users")
        assert not self.guard.requires_auth("HEAD", "/api/stats")

    def test_protected_method_under_protected_prefix(self):
        assert self.guard.requires_auth("POST", "/api/admin/users")
        assert self.guard.requires_auth("DELETE", "/api/internal/cache")
        assert not self.guard.requires_auth("GET", "/api/admin/users")

    def test_regular_api_routes_are_open(self):
        assert not self.guard.requires_auth("POST", "/api/analyze")
        assert not self.guard.requires_auth("DELETE", "/api/checklists/abc")

    def test_explicit_route_needs_credentials_for_any_method(self):
        assert self.guard.requires_auth("GET", "/api/stats")
        assert self.guard.requires_auth("GET", "/api/stats/")

    def test_credentials_from_header_or_cookie(self):
        assert self.guard.allows("POST", "/api/admin/users", {"authorization": "Bearer abc"}, {})
        assert self.guard.allows("POST", "/api/admin/users", {}, {"session": "xyz"})
        assert not self.guard.allows("POST", "/api/admin/users", {"authorization": "Bearer "}, {})
        assert not self.guard.allows("POST", "/api/admin/users", {}, {"other": "xyz"})

    def test_disabled_guard(self):
        guard = AuthGuard.from_settings(Settings(auth_guard_enabled=False))
        assert guard.allows("POST", "/api/admin/users", {}, {})


def cors_client(origins):
    app = FastAPI()
    app.add_middleware(CORSMiddleware, **cors_options(origins))

    @app.get("/ping")
    def ping():
        return {"ok": True}

    return TestClient(app)


def allowed_origin(client, origin):
    response = client.get("/ping", headers={"Origin": origin})
    return response.headers.get("access-control-allow-origin")


class TestCorsOptions:
    def test_exact_origins(self):
        options = cors_options(["https://app.example.com/"])
        assert options["allow_origins"] == ["https://app.example.com"]
        assert options["allow_credentials"] is True
        assert "allow_origin_regex" not in options

    def test_wildcard_subdomains(self):
        client = cors_client(["*.example.com", "https://admin.test.io"])

        assert allowed_origin(client, "https://app.example.com") == "https://app.example.com"
        assert allowed_origin(client, "http://a.b.example.com:3000") == "http://a.b.example.com:3000"
        assert allowed_origin(client, "https://admin.test.io") == "https://admin.test.io"
        assert allowed_origin(client, "https://example.com.evil.io") is None
        assert allowed_origin(client, "https://other.test.io") is None

    def test_scheme_is_kept_when_given(self):
        client = cors_client(["https://*.example.com"])

        assert allowed_origin(client, "https://app.example.com") == "https://app.example.com"
        assert allowed_origin(client, "http://app.example.com") is None

    def test_any_origin(self):
        options = cors_options(["*"])
        assert options["allow_origins"] == ["*"]
        assert options["allow_credentials"] is False
        assert allowed_origin(cors_client(["*"]), "https://anything.dev") == "*"
