from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import settings
from auth_routes import router as auth_router
from cart_routes import router as cart_router
from category_routes import router as category_router
from errors import AppError
from logging_config import configure_logging
from order_routes import router as order_router
from product_routes import router as product_router
from user_routes import router as user_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # A store that cannot be reached at startup is fatal.
    if database.db is None:
        database.init_db()
    yield
    database.close_db()


app = FastAPI(title="NgeBaju-API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------
# Error rendering
# -----------------
@app.exception_handler(AppError)
def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "Invalid value")}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"success": False, "errors": errors})


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": str(exc.detail)})


@app.exception_handler(PyMongoError)
def store_error_handler(request: Request, exc: PyMongoError):
    logger.error("Store error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"success": False, "message": "Server error"})


@app.exception_handler(Exception)
def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", path=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal Server Error"})


# -----------------
# Routes
# -----------------
@app.get("/")
def root():
    return {"message": "NgeBaju-API"}


@app.get("/health")
def health():
    response = {
        "backend": "running",
        "database": "not available",
        "database_name": None,
        "collections": [],
    }
    if database.db is None:
        return response
    response["database_name"] = database.db.name
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Health check could not list collections", error=str(e))
        response["database"] = f"connected but error: {str(e)[:50]}"
    return response


api = APIRouter(prefix="/api")
api.include_router(auth_router)
api.include_router(product_router)
api.include_router(order_router)
api.include_router(category_router)
api.include_router(user_router)
api.include_router(cart_router)
app.include_router(api)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
