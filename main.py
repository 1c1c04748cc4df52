from fastapi import FastAPI
from shared.config.database import engine, Base
from shared.errors import register_exception_handlers
from shared.observability import setup_observability

# IMPORTANT: import models so they register with Base
from services.auth_service import models as auth_models
from services.product_service import models as product_models
from services.cart_service import models as cart_models
from services.order_service import models as order_models

from services.cart_service.router import router as cart_router
from services.order_service.router import router as order_router
from services.payment_service.router import router as payment_router

app = FastAPI(title="Checkout Service", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(app, "checkout_service")

# --- ERROR MAPPING ---
register_exception_handlers(app)

app.include_router(cart_router)
app.include_router(order_router)
app.include_router(payment_router)

@app.get("/health", include_in_schema=False)
async def health_check():
    return {"service": "checkout", "status": "running"}

@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        # Create all tables
        await conn.run_sync(Base.metadata.create_all)
