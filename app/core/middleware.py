from starlette.middleware.base import BaseHTTPMiddleware

from .observability import correlation_context


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        client_host = request.client.host if request.client else None
        forwarded = request.headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else client_host
        request.state.ip = ip
        request.state.user_agent = request.headers.get("user-agent")
        with correlation_context(request.headers.get("x-request-id")) as correlation_id:
            response = await call_next(request)
            response.headers["X-Request-ID"] = correlation_id
        return response
