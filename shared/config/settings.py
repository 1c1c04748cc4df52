import os
from dotenv import load_dotenv

load_dotenv()

# Gateway credentials are required at process start, not per request.
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
if not STRIPE_SECRET_KEY:
    raise ValueError("FATAL ERROR: STRIPE_SECRET_KEY is not set in the environment!")

STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
if not STRIPE_WEBHOOK_SECRET:
    raise ValueError("FATAL ERROR: STRIPE_WEBHOOK_SECRET is not set in the environment!")

STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")
STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", 300))

# Checkout sessions expire on the gateway side after this window
CHECKOUT_SESSION_TTL_MINUTES = int(os.getenv("CHECKOUT_SESSION_TTL_MINUTES", 30))

# Origin used for the default success/cancel redirect URLs
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")

DEFAULT_SUCCESS_URL = f"{APP_BASE_URL}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"
DEFAULT_CANCEL_URL = f"{APP_BASE_URL}/checkout/cancel"

SHIPPING_ALLOWED_COUNTRIES = ["US", "CA", "GB", "AU", "DE", "FR", "IT", "ES"]
PAYMENT_METHOD_TYPES = ["card"]
