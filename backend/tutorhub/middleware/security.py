"""Security Headers Middleware

Every response from this API is JSON, so the content policy locks the
browser down completely. The interactive docs pages are the exception.
"""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

API_CSP = "default-src 'none'; frame-ancestors 'none'"

# Swagger UI / ReDoc load their bundles from a CDN
DOCS_PATHS = ("/api/docs", "/api/redoc", "/openapi.json")

# Responses that may carry portal tokens or session details
NO_STORE_PREFIXES = ("/api/portal", "/api/auth")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        path = request.url.path

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"

        # Only meaningful once the client is already on HTTPS
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if not path.startswith(DOCS_PATHS):
            response.headers["Content-Security-Policy"] = API_CSP

        if path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"

        return response
