"""
ORM models for the lifecycle-managed documents across procurement, inventory,
sales and maintenance/safety, plus security and the transition log.

Importing this package ensures model classes are registered with the Base
metadata for Alembic and runtime usage.
"""

from .security import (  # noqa: F401
    Tenant,
    User,
    Role,
    Permission,
    UserRole,
    RolePermission,
)
from .lifecycle import (  # noqa: F401
    StateTransitionLog,
    IdempotencyKey,
    SoDRuleConfig,
    AuditLog,
)
from .inventory import (  # noqa: F401
    Location,
    StockLevel,
    InventoryTransaction,
    StockAdjustment,
    StockAdjustmentLine,
)
from .procurement import (  # noqa: F401
    Supplier,
    PurchaseOrder,
    PurchaseOrderLine,
    PurchaseReturn,
    PurchaseReturnLine,
)
from .sales import (  # noqa: F401
    Customer,
    SalesInvoice,
    SalesInvoiceLine,
    CustomerPayment,
    CustomerLedgerEntry,
    SalesReturn,
    SalesReturnLine,
)
from .maintenance import (  # noqa: F401
    Asset,
    MaintenanceWorkOrder,
    LOTOProcedure,
    LOTOExecution,
    PermitToWork,
)
