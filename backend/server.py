from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from audit_service import AuditService
from beneficiary_routes import create_beneficiary_routes
from payment_type_routes import create_payment_type_routes
from core.errors import BeneficiaryError, InvalidObjectIdError, StoreError
from core.ledger_store import ensure_indexes

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017/?replicaSet=rs0')
DB_NAME = os.environ.get('DB_NAME', 'beneficiary_allocation')
API_PREFIX = os.environ.get('API_PREFIX', '/api/v1')
CORS_ORIGINS = [origin.strip() for origin in os.environ.get('CORS_ORIGINS', '*').split(',') if origin.strip()]
# Legacy clients expect every domain failure as a 500
UNIFORM_ERROR_STATUS = os.environ.get('UNIFORM_ERROR_STATUS', 'false').lower() == 'true'

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def format_validation_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten pydantic errors into one entry per offending field"""
    formatted = []
    for error in errors:
        loc = error.get("loc", ())
        msg = error.get("msg", "Invalid value")
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        formatted.append({
            "type": "field",
            "location": loc[0] if loc else None,
            "path": ".".join(str(part) for part in loc[1:]),
            "msg": msg,
            "value": error.get("input")
        })
    return formatted


def _register_exception_handlers(app: FastAPI, uniform_error_status: bool) -> None:

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=jsonable_encoder({
                "success": False,
                "errors": format_validation_errors(exc.errors())
            })
        )

    @app.exception_handler(BeneficiaryError)
    async def beneficiary_exception_handler(request: Request, exc: BeneficiaryError) -> JSONResponse:
        if isinstance(exc, InvalidObjectIdError):
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=jsonable_encoder({
                    "success": False,
                    "errors": [{
                        "type": "field",
                        "location": "params",
                        "path": exc.field,
                        "msg": exc.message,
                        "value": exc.value
                    }]
                })
            )

        if isinstance(exc, StoreError):
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")

        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR if uniform_error_status else exc.status_code
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "message": exc.message}
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {str(exc)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "message": "Server error"}
        )


def create_app(
    client: Optional[AsyncIOMotorClient] = None,
    db=None,
    uniform_error_status: Optional[bool] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    client/db default to a Motor connection from MONGO_URL/DB_NAME;
    uniform_error_status defaults to UNIFORM_ERROR_STATUS.
    """
    if client is None:
        client = AsyncIOMotorClient(MONGO_URL)
    if db is None:
        db = client[DB_NAME]
    if uniform_error_status is None:
        uniform_error_status = UNIFORM_ERROR_STATUS

    audit_service = AuditService(db)

    app = FastAPI(
        title="Beneficiary Allocation Service",
        version="1.0.0",
        description="Payment type beneficiaries with percentage allocation enforcement"
    )
    app.state.client = client
    app.state.db = db

    _register_exception_handlers(app, uniform_error_status)

    app.include_router(create_beneficiary_routes(client, db, audit_service), prefix=API_PREFIX)
    app.include_router(create_payment_type_routes(client, db, audit_service), prefix=API_PREFIX)

    @app.get(f"{API_PREFIX}/health")
    async def health_check():
        return {"status": "healthy"}

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def create_indexes():
        try:
            await ensure_indexes(db)
        except Exception as e:
            # Index may already exist with different options
            logger.warning(f"Index creation result: {str(e)}")

    @app.on_event("shutdown")
    async def shutdown_db_client():
        client.close()

    return app


app = create_app()
