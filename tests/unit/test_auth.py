"""
Unit tests for the JWT auth middleware.
"""

import time
from dataclasses import dataclass

import jwt
import pytest

from zenweb.middleware.auth import (
    AuthConfig,
    BaseClaims,
    InvalidTokenError,
    MissingTokenError,
    auth,
    auth_with_config,
    generate_token,
    get_claims,
)

SECRET = "test-secret-key-that-is-at-least-32-bytes"


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def protected(engine):
    calls = []
    api = engine.group("/api", auth(SECRET))

    @api.get("/me")
    def me(ctx):
        calls.append(ctx.claims)
        ctx.json(200, {"user": ctx.claims.user_id, "role": ctx.claims.role})

    return engine, calls


class TestAuthMiddleware:
    def test_valid_token_exposes_claims(self, protected, make_request):
        engine, calls = protected
        token = jwt.encode({"user_id": "42", "role": "admin", "exp": int(time.time()) + 60}, SECRET, algorithm="HS256")

        response = engine.handle(make_request(path="/api/me", headers=bearer(token)))

        assert response.status == 200
        assert response.json == {"user": "42", "role": "admin"}
        assert isinstance(calls[0], BaseClaims)

    def test_missing_token_never_runs_handler(self, protected, make_request):
        engine, calls = protected

        response = engine.handle(make_request(path="/api/me"))

        assert response.status == 401
        assert "missing" in response.json["error"]
        assert calls == []

    def test_wrong_scheme(self, protected, make_request):
        engine, calls = protected

        response = engine.handle(make_request(path="/api/me", headers={"Authorization": "Basic abc"}))

        assert response.status == 401
        assert calls == []

    def test_bad_signature(self, protected, make_request):
        engine, calls = protected
        token = jwt.encode({"user_id": "42"}, "another-secret-key-that-is-32-bytes-long", algorithm="HS256")

        response = engine.handle(make_request(path="/api/me", headers=bearer(token)))

        assert response.status == 401
        assert response.json["error"].startswith("invalid token")
        assert calls == []

    def test_expired_token(self, protected, make_request):
        engine, calls = protected
        token = jwt.encode({"user_id": "42", "exp": int(time.time()) - 60}, SECRET, algorithm="HS256")

        response = engine.handle(make_request(path="/api/me", headers=bearer(token)))

        assert response.status == 401
        assert response.json == {"error": "token has expired"}

    def test_routes_outside_group_are_public(self, protected, make_request):
        engine, _ = protected
        engine.get("/public", lambda ctx: ctx.text(200, "hi"))

        assert engine.handle(make_request(path="/public")).status == 200

    def test_empty_secret_is_rejected(self):
        with pytest.raises(ValueError):
            auth("")

    def test_invalid_lookup_is_rejected(self):
        with pytest.raises(ValueError):
            auth_with_config(AuthConfig(secret_key=SECRET, token_lookup="body:token"))


class TestTokenLookup:
    def test_query_lookup(self, engine, make_request):
        engine.use(auth_with_config(AuthConfig(secret_key=SECRET, token_lookup="query:token")))
        engine.get("/", lambda ctx: ctx.text(200, ctx.claims.user_id))
        token = generate_token({"user_id": "7"}, SECRET)

        response = engine.handle(make_request(query={"token": [token]}))

        assert response.text == "7"

    def test_cookie_lookup(self, engine, make_request):
        engine.use(auth_with_config(AuthConfig(secret_key=SECRET, token_lookup="cookie:jwt")))
        engine.get("/", lambda ctx: ctx.text(200, ctx.claims.user_id))
        token = generate_token({"user_id": "8"}, SECRET)

        assert engine.handle(make_request(headers={"Cookie": f"jwt={token}"})).text == "8"
        assert engine.handle(make_request()).status == 401

    def test_skip_paths(self, engine, make_request):
        engine.use(auth_with_config(AuthConfig(secret_key=SECRET, skip_paths=["/login"])))
        engine.post("/login", lambda ctx: ctx.text(200, "welcome"))

        assert engine.handle(make_request("POST", "/login")).status == 200

    def test_custom_unauthorized(self, engine, make_request):
        errors = []

        def unauthorized(ctx, error):
            errors.append(error)
            ctx.text(403, "nope")

        engine.use(auth_with_config(AuthConfig(secret_key=SECRET, unauthorized=unauthorized)))
        engine.get("/", lambda ctx: ctx.text(200, "secret"))

        engine.handle(make_request())
        engine.handle(make_request(headers=bearer("garbage")))

        assert isinstance(errors[0], MissingTokenError)
        assert isinstance(errors[1], InvalidTokenError)


@dataclass
class AdminClaims:
    user_id: str
    admin: bool


class TestClaims:
    def test_claims_factory_and_get_claims(self, engine, make_request):
        factory = lambda payload: AdminClaims(user_id=payload["user_id"], admin=payload.get("admin", False))
        engine.use(auth_with_config(AuthConfig(secret_key=SECRET, claims_factory=factory)))
        seen = {}

        @engine.get("/")
        def handler(ctx):
            seen["admin"] = get_claims(ctx, AdminClaims)
            seen["base"] = get_claims(ctx, BaseClaims)
            ctx.status(204)

        engine.handle(make_request(headers=bearer(generate_token({"user_id": "1", "admin": True}, SECRET))))

        assert seen["admin"] == AdminClaims(user_id="1", admin=True)
        assert seen["base"] is None

    def test_generate_token_round_trips_base_claims(self):
        token = generate_token(BaseClaims(user_id="42", role="editor", extra={"team": "core"}), SECRET, expires_in=60)

        payload = jwt.decode(token, SECRET, algorithms=["HS256"])
        claims = BaseClaims.from_payload(payload)

        assert claims.user_id == "42"
        assert claims.role == "editor"
        assert claims.extra == {"team": "core"}
        assert claims.exp - claims.iat == 60

    def test_generate_token_requires_secret(self):
        with pytest.raises(ValueError):
            generate_token({"user_id": "1"}, "")
