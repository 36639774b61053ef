import logging

import uvicorn
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from core.catch_error_middleware import ErrorHandlerMiddleware
from core.errors import DomainError, InvariantViolation
from core.exception_handler import (
    DomainErrorHandler,
    InvariantViolationHandler,
    ValidationErrorHandler,
)
from core.lifespan import lifespan
from core.settings import settings
from routes.contract_routes import router as contract_router
from routes.payment_routes import router as payment_router
from routes.signing_routes import router as signing_router
from routes.termination_routes import router as termination_router
from routes.webhooks_routes import router as webhook_router

logging.basicConfig(level=logging.INFO)
app = FastAPI(
    lifespan=lifespan,
    title=settings.PROJECT_NAME,
    version="1.0.0",
)

app.include_router(contract_router, prefix="/v1/contracts")
app.include_router(termination_router, prefix="/v1/contracts")
app.include_router(signing_router, prefix="/v1/sign")
app.include_router(payment_router, prefix="/v1/payments")
app.include_router(webhook_router, prefix="/v1/webhooks")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["System"])
async def health_check():
    return {"status": "ok"}


app.add_exception_handler(RequestValidationError, ValidationErrorHandler())
app.add_exception_handler(DomainError, DomainErrorHandler())
app.add_exception_handler(InvariantViolation, InvariantViolationHandler())

app.add_middleware(ErrorHandlerMiddleware)


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8001)
