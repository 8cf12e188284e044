from fastapi import FastAPI, Request
from starlette.responses import Response

from app.logging_config import get_logger

log = get_logger('http')

SECURITY_HEADERS = {
    'X-Robots-Tag': 'noindex, nofollow, noarchive',
    'X-Content-Type-Options': 'nosniff',
    'Referrer-Policy': 'no-referrer',
    # Stock figures change with every write.
    'Cache-Control': 'no-store',
}


def install_security_headers(app: FastAPI) -> None:
    @app.middleware('http')
    async def add_security_headers(request: Request, call_next):
        response: Response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if response.status_code >= 500:
            log.warning('%s %s returned %s', request.method, request.url.path, response.status_code)
        return response
