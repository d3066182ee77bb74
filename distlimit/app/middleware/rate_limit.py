"""Rate limiting middleware.

Maps each HTTP request to rate limit dimensions, asks the decision engine,
and turns a denial into 429 Too Many Requests with the X-RateLimit-* and
Retry-After headers.
"""

from typing import Dict, Iterable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from distlimit.app.core.config import settings
from distlimit.app.core.logging import get_logger
from distlimit.app.services.engine import DecisionEngine, get_decision_engine

logger = get_logger(__name__)

DEFAULT_EXEMPT_PATHS = ("/metrics", "/stats")


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    Dimensions extracted from each request:
    - ip: first X-Forwarded-For hop, else the client address
    - api_key: Bearer token from the Authorization header
    - user_id: value of the settings.user_id_header header
    - endpoint: "METHOD /path"
    Rules whose dimensions are missing from a request do not apply to it.
    """

    def __init__(
        self,
        app,
        engine: Optional[DecisionEngine] = None,
        exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS,
    ):
        super().__init__(app)
        self._engine = engine
        self.exempt_paths = frozenset(exempt_paths)

    @property
    def engine(self) -> DecisionEngine:
        return self._engine or get_decision_engine()

    def _get_dimensions(self, request: Request) -> Dict[str, str]:
        """Extract rate limit dimensions from the request.

        Args:
            request: FastAPI request object

        Returns:
            Dimension name -> identifier

        Raises:
            ValueError: If the API key exceeds settings.max_api_key_length
        """
        dimensions: Dict[str, str] = {}

        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            dimensions["ip"] = forwarded.split(",")[0].strip()
        elif request.client:
            dimensions["ip"] = request.client.host

        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            api_key = auth[7:].strip()
            # Reject extremely long keys before they are hashed
            if len(api_key) > settings.max_api_key_length:
                raise ValueError(
                    f"API key too long (max {settings.max_api_key_length} characters)"
                )
            if api_key:
                dimensions["api_key"] = api_key

        user_id = request.headers.get(settings.user_id_header)
        if user_id:
            dimensions["user_id"] = user_id.strip()

        dimensions["endpoint"] = f"{request.method} {request.url.path}"
        return dimensions

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        try:
            dimensions = self._get_dimensions(request)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"detail": str(e)})

        decision = await self.engine.evaluate(dimensions)

        if not decision.allowed:
            logger.info(
                f"Rate limit exceeded for {decision.dimension}",
                extra={
                    "rule_id": decision.rule_id,
                    "dimension": decision.dimension,
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": "Rate limit exceeded. Please try again later.",
                    "retry_after": decision.retry_after_seconds,
                },
                headers=decision.to_headers(),
            )

        response = await call_next(request)

        if decision.rule_id is not None:
            for name, value in decision.to_headers().items():
                response.headers[name] = value

        return response
