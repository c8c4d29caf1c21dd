import logging
from decimal import Decimal

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from . import __version__
from .config import CORS_ORIGINS, LOG_LEVEL
from .database import engine
from .errors import StoreError
from .messaging import messaging_enabled
from .models import Base
from .payment_consumer import start_payment_consumers
from .routers import (
    address_router,
    admin_router,
    cart_router,
    catalog_router,
    checkout_router,
    contact_router,
    order_router,
    payment_router,
    quote_router,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="ThreadCart",
    description="Storefront backend for industrial fasteners: catalog, cart, checkout and orders",
    version=__version__,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(catalog_router.router)
app.include_router(cart_router.router)
app.include_router(checkout_router.router)
app.include_router(order_router.router)
app.include_router(address_router.router)
app.include_router(contact_router.router)
app.include_router(quote_router.router)
app.include_router(payment_router.router)
app.include_router(admin_router.router)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(
        status_code=exc.status_code,
        # money as strings, same as in response models
        content=jsonable_encoder({"detail": exc.to_detail()}, custom_encoder={Decimal: str}),
    )


@app.on_event("startup")
def _startup() -> None:
    # Create database tables
    Base.metadata.create_all(bind=engine)
    if messaging_enabled():
        start_payment_consumers()
    else:
        logger.info("RABBITMQ_URL not set; event publishing and payment consumers disabled")


@app.get("/")
def root():
    return {
        "service": "ThreadCart",
        "status": "running",
        "version": __version__,
    }


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "service": "threadcart",
    }
