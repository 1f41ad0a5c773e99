# Import SQLAlchemy models so they register on Base.metadata
from localmart.models.address import Address  # noqa: F401
from localmart.models.delivery import Delivery, DeliveryStatus  # noqa: F401
from localmart.models.delivery_agent import AgentApprovalStatus, DeliveryAgent  # noqa: F401
from localmart.models.idempotency_record import IdempotencyRecord  # noqa: F401
from localmart.models.order import ItemApprovalStatus, Order, OrderItem, OrderStatus  # noqa: F401
from localmart.models.order_event import OrderEvent, OrderEventType  # noqa: F401
from localmart.models.wallet import (  # noqa: F401
    WalletBalance,
    WalletTransaction,
    WalletTransactionStatus,
    WalletTransactionType,
)
