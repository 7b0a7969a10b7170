import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from ledgerflow.api.actions import router as actions_router
from ledgerflow.api.fx import router as fx_router
from ledgerflow.api.positions import router as positions_router
from ledgerflow.api.prices import router as prices_router
from ledgerflow.api.reports import router as reports_router
from ledgerflow.api.transactions import router as transactions_router
from ledgerflow.container import Container
from ledgerflow.exceptions import ClosurePolicyError, ExternalServiceError, NotFoundError, ValidationError

logger = logging.getLogger("ledgerflow.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = Container()
    app.state.container = container
    yield
    await container.http_client().close()
    engine = container.engine()
    await engine.dispose()


app = FastAPI(title="Ledgerflow", version="0.1.0", lifespan=lifespan)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ClosurePolicyError)
async def closure_policy_handler(request: Request, exc: ClosurePolicyError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(ExternalServiceError)
async def external_service_handler(request: Request, exc: ExternalServiceError):
    logger.warning("Upstream failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled error on %s %s:\n%s", request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(actions_router)
app.include_router(transactions_router)
app.include_router(positions_router)
app.include_router(reports_router)
app.include_router(fx_router)
app.include_router(prices_router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}
