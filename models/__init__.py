# Import models so that SQLAlchemy metadata includes them on app startup
from .store import Store  # noqa: F401
from .subscription_plan import SubscriptionPlan  # noqa: F401
from .subscription import Subscription  # noqa: F401
from .order import Order  # noqa: F401
from .admission import OrderAdmission  # noqa: F401
