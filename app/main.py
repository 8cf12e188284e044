from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from app.config import settings
from app.logging_config import configure_logging
from app.routers import inventory, picking_lists, requirements
from app.security.headers import install_security_headers

configure_logging(settings.log_level, json_output=settings.log_json)

app = FastAPI(title='Stock Ledger')

install_security_headers(app)

app.include_router(inventory.router)
app.include_router(picking_lists.router)
app.include_router(requirements.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
