"""
=============================================================================
EXAMPLE: REST API SERVER
=============================================================================

A small user API built on zenweb. It shows:

1. Engine configuration (from ZEN_* environment variables)
2. Global middleware (recovery, access log, CORS, security, rate limit)
3. A public login route that issues JWTs
4. A protected /api group with auth middleware
5. Path params, JSON binding and write-once responses

    ┌─────────────────────────────────────────────────────────────────┐
    │  GLOBAL    recovery → access_logger → cors → security           │
    │            → rate_limiter                                       │
    ├─────────────────────────────────────────────────────────────────┤
    │  /login    POST  issues a token                                 │
    │  /health   GET   excluded from rate limiting and logging        │
    ├─────────────────────────────────────────────────────────────────┤
    │  /api      auth (Bearer JWT)                                    │
    │            GET    /api/users          list                      │
    │            GET    /api/users/me       current user              │
    │            GET    /api/users/:id      one user or 404           │
    │            POST   /api/users          create (201)              │
    │            DELETE /api/users/:id      admin only (204)          │
    └─────────────────────────────────────────────────────────────────┘

Run it:

    python examples/api_server.py

    TOKEN=$(curl -s -X POST localhost:8080/login -d '{"user": "alice"}' | jq -r .token)
    curl -H "Authorization: Bearer $TOKEN" localhost:8080/api/users/me

=============================================================================
"""

import os
import threading
from http import HTTPStatus

from zenweb import Engine, EngineConfig
from zenweb.middleware import (
    BaseClaims,
    CORSConfig,
    LoggerConfig,
    RateLimitConfig,
    access_logger,
    auth,
    cors,
    generate_token,
    get_claims,
    rate_limiter,
    recovery,
    security,
)


SECRET_KEY = os.getenv("ZEN_SECRET_KEY", "change-me-in-production-at-least-32-bytes")

# =============================================================================
# IN-MEMORY DATABASE
# =============================================================================
# Handlers run on several worker threads, so the store has a lock.

users_db = {
    1: {"id": 1, "name": "alice", "role": "admin"},
    2: {"id": 2, "name": "bob", "role": "user"},
}
next_id = 3
db_lock = threading.Lock()


def require_admin(ctx):
    claims = get_claims(ctx, BaseClaims)
    if claims is None or claims.role != "admin":
        ctx.json(HTTPStatus.FORBIDDEN, {"error": "admin only"})
        return
    ctx.next()


def create_app(config=None) -> Engine:
    app = Engine(config or EngineConfig.from_env())

    app.use(
        recovery(),
        access_logger(LoggerConfig(skip_paths=["/health"])),
        cors(CORSConfig(expose_headers=["X-Request-ID"])),
        security(),
        rate_limiter(RateLimitConfig(limit=100, window=60, burst=20, exclude_paths=["/health"])),
    )

    @app.get("/health")
    def health(ctx):
        ctx.json(HTTPStatus.OK, {"status": "healthy"})

    @app.post("/login")
    def login(ctx):
        ok, payload = ctx.bind_json_with_error()
        if not ok:
            return
        name = str(payload.get("user", "")) if isinstance(payload, dict) else ""
        with db_lock:
            user = next((u for u in users_db.values() if u["name"] == name), None)
        if user is None:
            ctx.json(HTTPStatus.UNAUTHORIZED, {"error": "unknown user"})
            return
        claims = BaseClaims(user_id=str(user["id"]), role=user["role"])
        ctx.json(HTTPStatus.OK, {"token": generate_token(claims, SECRET_KEY, expires_in=3600)})

    api = app.group("/api", auth(SECRET_KEY))

    @api.get("/users")
    def list_users(ctx):
        with db_lock:
            users = list(users_db.values())
        ctx.json(HTTPStatus.OK, {"users": users})

    # Registered after /users/:id would still win: literals beat params.
    @api.get("/users/me")
    def current_user(ctx):
        with db_lock:
            user = users_db.get(int(ctx.claims.user_id))
        ctx.json(HTTPStatus.OK, user)

    @api.get("/users/:id")
    def get_user(ctx):
        user_id = ctx.param("id")
        if not user_id.isdigit():
            ctx.json(HTTPStatus.BAD_REQUEST, {"error": "id must be a number"})
            return
        with db_lock:
            user = users_db.get(int(user_id))
        if user is None:
            ctx.json(HTTPStatus.NOT_FOUND, {"error": f"user {user_id} not found"})
            return
        ctx.json(HTTPStatus.OK, user)

    @api.post("/users")
    def create_user(ctx):
        global next_id
        ok, payload = ctx.bind_json_with_error()
        if not ok:
            return
        if not isinstance(payload, dict) or not payload.get("name"):
            ctx.json(HTTPStatus.BAD_REQUEST, {"error": "name is required"})
            return
        with db_lock:
            user = {"id": next_id, "name": payload["name"], "role": payload.get("role", "user")}
            users_db[next_id] = user
            next_id += 1
        ctx.json(HTTPStatus.CREATED, user)

    admin = api.group("/users", require_admin)

    @admin.delete("/:id")
    def delete_user(ctx):
        user_id = ctx.param("id")
        if user_id.isdigit():
            with db_lock:
                users_db.pop(int(user_id), None)
        ctx.status(HTTPStatus.NO_CONTENT)

    return app


if __name__ == "__main__":
    create_app().run()
