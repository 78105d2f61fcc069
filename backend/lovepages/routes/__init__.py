from lovepages.routes.users import router as users_router
from lovepages.routes.payment import router as payment_router
from lovepages.routes.webhooks import router as webhooks_router

__all__ = ["users_router", "payment_router", "webhooks_router"]
