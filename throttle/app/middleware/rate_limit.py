"""Rate limiting integration for request handlers.

Handlers opt in by name and otherwise stay unaware of the limiter:

    @router.post("/login")
    @rate_limited("auth")
    async def login(request: Request, ...):
        ...

Denied requests get a standardized 429 without the handler running.
Allowed requests get X-RateLimit-* headers while the route keeps its own
response_model and status_code.
"""

import functools
import inspect
import time
from typing import Any, Callable, Iterable, Optional

from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from throttle.app.core.config import settings
from throttle.app.exceptions import RateLimitExceededError
from throttle.app.services.rate_limit.models import Decision
from throttle.app.services.rate_limit.profiles import get_profile_registry
from throttle.app.services.rate_limit.service import RateLimiter, get_rate_limiter

Handler = Callable[..., Any]

DEFAULT_MESSAGE = "Too many requests. Please try again later."

# Name of the Response parameter added to wrapped handlers
RESPONSE_PARAM = "rate_limit_response"


def apply_rate_limit_headers(response: Response, decision: Decision) -> Response:
    """Attach quota headers from decision to response."""
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(decision.reset_at)
    return response


def build_throttled_response(
    decision: Decision,
    message: str = DEFAULT_MESSAGE,
    now: Optional[float] = None,
) -> JSONResponse:
    """Standardized 429 response for a denied decision."""
    error = RateLimitExceededError(limit=decision.limit, reset_at=decision.reset_at, message=message)
    return throttled_response_from_error(error, now)


def throttled_response_from_error(error: RateLimitExceededError, now: Optional[float] = None) -> JSONResponse:
    """Render a RateLimitExceededError as the standardized 429."""
    now = time.time() if now is None else now
    body = error.to_response(now)
    return JSONResponse(
        status_code=error.status_code,
        content=body,
        headers={
            "Retry-After": str(body["retryAfter"]),
            "X-RateLimit-Limit": str(error.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(error.reset_at),
        },
    )


def _find_request(args: tuple, kwargs: dict) -> Request:
    for value in (*args, *kwargs.values()):
        if isinstance(value, Request):
            return value
    raise TypeError("Rate limited handlers must accept the incoming Request as an argument")


def _with_response_parameter(signature: inspect.Signature) -> tuple[inspect.Signature, str, bool]:
    """Signature asking FastAPI to inject a Response for quota headers.

    Returns the signature, the parameter name and whether the parameter was
    added (as opposed to already declared by the handler).
    """
    for param in signature.parameters.values():
        if param.annotation is Response:
            return signature, param.name, False

    injected = inspect.Parameter(
        RESPONSE_PARAM, inspect.Parameter.KEYWORD_ONLY, annotation=Response
    )
    params = list(signature.parameters.values())
    # Keyword-only parameters must precede **kwargs
    position = len(params)
    if params and params[-1].kind is inspect.Parameter.VAR_KEYWORD:
        position -= 1
    params.insert(position, injected)
    return signature.replace(parameters=params), RESPONSE_PARAM, True


def with_rate_limit(
    handler: Handler,
    profile_name: str,
    limiter: Optional[RateLimiter] = None,
) -> Handler:
    """Wrap a handler so it is throttled by the named profile.

    The profile is looked up immediately, so a typo in profile_name fails
    at import time rather than on the first request.

    The handler's return value is passed back untouched, so FastAPI still
    applies the route's response_model and status_code. Quota headers are
    set on an injected Response, or on the handler's own Response when it
    returns one. Sync handlers run in the threadpool.

    Args:
        handler: Handler receiving the Request among its arguments
        profile_name: Registry name of the profile to enforce
        limiter: Engine to use (defaults to the process-wide engine at call time)

    Returns:
        Wrapped async handler

    Raises:
        ConfigError: If profile_name is not registered
    """
    registry = limiter.registry if limiter is not None else get_profile_registry()
    profile = registry.lookup(profile_name)
    signature, response_name, injected = _with_response_parameter(inspect.signature(handler))
    is_async = inspect.iscoroutinefunction(handler)

    @functools.wraps(handler)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        if injected:
            response = kwargs.pop(response_name, None)
        else:
            response = kwargs.get(response_name)
        request = _find_request(args, kwargs)
        active = limiter or get_rate_limiter()

        decision = await active.rate_limit(request, profile)
        if not decision.allowed:
            return build_throttled_response(decision, now=active.now())

        if is_async:
            result = await handler(*args, **kwargs)
        else:
            result = await run_in_threadpool(handler, *args, **kwargs)

        if isinstance(result, Response):
            return apply_rate_limit_headers(result, decision)
        if response is not None:
            # FastAPI merges these headers into the serialized response
            apply_rate_limit_headers(response, decision)
        return result

    wrapper.__signature__ = signature
    return wrapper


def rate_limited(profile_name: str, limiter: Optional[RateLimiter] = None) -> Callable[[Handler], Handler]:
    """Decorator form of with_rate_limit."""
    def decorator(handler: Handler) -> Handler:
        return with_rate_limit(handler, profile_name, limiter)
    return decorator


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware applying one profile to every request.

    Useful as a global ceiling (the ``api`` profile by default); endpoints
    with stricter needs still use rate_limited on top.
    """

    DEFAULT_EXEMPT_PATHS = ("/health",)

    def __init__(
        self,
        app,
        profile_name: Optional[str] = None,
        limiter: Optional[RateLimiter] = None,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ):
        super().__init__(app)
        self.limiter = limiter
        registry = limiter.registry if limiter is not None else get_profile_registry()
        self.profile = registry.lookup(profile_name or settings.rate_limit_default_profile)
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        active = self.limiter or get_rate_limiter()
        decision = await active.rate_limit(request, self.profile)
        if not decision.allowed:
            return build_throttled_response(decision, now=active.now())

        response = await call_next(request)
        return apply_rate_limit_headers(response, decision)
