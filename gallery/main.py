import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import router as auth_router
from .config import get_settings, setup_logging
from .errors import GalleryError, QuotaExceededError
from .gallery_api import router as gallery_router
from .notes_api import router as notes_router
from .upload_api import router as upload_router

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Couples Gallery API", version="1.0.0")
app.include_router(auth_router)
app.include_router(gallery_router)
app.include_router(upload_router)
app.include_router(notes_router)

sett = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=sett.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(GalleryError)
async def gallery_error_handler(request: Request, exc: GalleryError):
    body = {"ok": False, "error": exc.message}
    if isinstance(exc, QuotaExceededError) and exc.remaining_bytes is not None:
        body["remainingBytes"] = exc.remaining_bytes
    return JSONResponse(body, status_code=exc.status_code)

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"ok": False, "error": str(exc.detail)}, status_code=exc.status_code,
                        headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    reason = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse({"ok": False, "error": reason}, status_code=400)

@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s", request.url.path)
    return JSONResponse({"ok": False, "error": "Internal error"}, status_code=500)


@app.get("/health")
def health():
    return {"ok": True}
