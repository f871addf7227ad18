import os
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from accounting_routes import router as accounting_router
from budgeting_routes import router as budgeting_router
from config_validator import ConfigValidator
from db_pool import close_pool
from errors import register_error_handlers
from pricing_routes import router as pricing_router
from quota_routes import router as quota_router
from resources_routes import router as resources_router
from structured_logging import setup_logging

APP_NAME = "billing-api"

ALLOWED_ORIGINS = [
    "http://localhost:5173",  # UI
    os.getenv("BILLING_ALLOWED_ORIGIN", "http://localhost:5173"),
]
ALLOWED_ORIGINS = list(dict.fromkeys(origin for origin in ALLOWED_ORIGINS if origin))

# Validate configuration on import
ConfigValidator.validate_and_exit_on_error()

logger = setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
    log_file=os.getenv("LOG_FILE", None),
)

# Rate limiting
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title=APP_NAME)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(accounting_router)
app.include_router(budgeting_router)
app.include_router(pricing_router)
app.include_router(resources_router)
app.include_router(quota_router)


@app.on_event("shutdown")
async def shutdown_event():
    close_pool()
    logger.info("%s stopped", APP_NAME)


@app.get("/health")
@limiter.limit("60/minute")
def health(request: Request):
    return {
        "status": "ok",
        "service": APP_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("BILLING_API_PORT", "8000")))
