from contextlib import asynccontextmanager
from time import perf_counter

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ha_dashboard.core import settings
from ha_dashboard.core.errors import AssistantError
from ha_dashboard.routers import chat, context, ha, log, system
from ha_dashboard.services.log_service import elapsed_ms, log_http_request, start_log_worker, stop_log_worker


@asynccontextmanager
async def lifespan(_: FastAPI):
    start_log_worker()
    try:
        yield
    finally:
        stop_log_worker()


app = FastAPI(title=settings.APP_NAME, version="0.1.0", lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        log_http_request(
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=elapsed_ms(started),
            client_ip=request.client.host if request.client else None,
        )


@app.exception_handler(AssistantError)
async def handle_assistant_error(_: Request, ex: AssistantError) -> JSONResponse:
    return JSONResponse(status_code=ex.status_code, content=ex.to_error_detail())


app.include_router(system.router)
app.include_router(chat.router)
app.include_router(ha.router)
app.include_router(context.router)
app.include_router(log.router)
