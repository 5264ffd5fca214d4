"""FastAPI application entry point."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pdfapp.core.config import settings
from pdfapp.core.logging import setup_logging
from pdfapp.api.routes import health
from pdfapp.api.routes.admin import router as admin_router
from pdfapp.api.routes.billing import router as billing_router
from pdfapp.billing.stripe_gateway import StripeGateway

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Billing backend for the PDF tools frontend",
    version="1.0.0",
)

# Stripe access is resolved once and injected through get_billing_gateway
app.state.billing_gateway = StripeGateway(settings.billing_config())

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(billing_router)
app.include_router(admin_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"{settings.PROJECT_NAME} API", "version": "1.0.0"}
