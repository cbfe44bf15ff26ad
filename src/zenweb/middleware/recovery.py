"""
Panic recovery middleware.

Install it first so it wraps everything else:

    engine.use(recovery(), access_logger())

An exception raised anywhere later in the chain is logged with its
traceback and turned into 500 {"error": "Internal Server Error"}. The
worker thread and the next request are unaffected.
"""

import logging
from http import HTTPStatus

from ..context import Context, HandlerFunc


logger = logging.getLogger(__name__)

INTERNAL_ERROR_BODY = {"error": "Internal Server Error"}


def recovery() -> HandlerFunc:
    """Build the recovery middleware."""

    def recover(ctx: Context) -> None:
        try:
            ctx.next()
        except Exception:
            logger.exception(f"PANIC RECOVERED in {ctx.method} {ctx.path}")
            ctx.json(HTTPStatus.INTERNAL_SERVER_ERROR, INTERNAL_ERROR_BODY)
            ctx.quit()

    return recover
