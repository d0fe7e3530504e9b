"""Magazine subscription engine: issue allocation, renewals, alerts and association sync."""

from .alerts import ShortageAlertEmitter, shortage_kind
from .allocator import EntitlementAllocator
from .config import EngineConfig, load_engine_config
from .exceptions import (
    ConcurrencyConflict,
    ConfigurationError,
    NotFoundError,
    StoreValidationError,
    SubscriptionEngineError,
    TransientError,
)
from .lifecycle import SubscriptionLifecycleManager, generate_subscription_id
from .memory import InMemoryRecordStore
from .models import (
    Alert,
    AlertStatus,
    AlertType,
    EntitlementStatus,
    IssueEntitlement,
    IssueStatus,
    LineItem,
    LineItemOutcome,
    MagazineIssue,
    NewPurchase,
    OrderContext,
    OrderPaidEvent,
    OrderProcessingResult,
    OrderType,
    Product,
    RecordType,
    Renewal,
    Subscription,
    SubscriptionStatus,
    SyncResult,
    classify_order,
)
from .refs import (
    AlertRef,
    CustomerRef,
    EntitlementRef,
    MagazineIssueRef,
    OrderRef,
    ProductRef,
    Ref,
    SubscriptionRef,
    VariantRef,
)
from .renewals import OrderGateway, RecordStoreOrderGateway, RenewalOrderService
from .repository import EntitlementStore
from .selector import IssueEligibilitySelector, parse_issue_count
from .shipping import ShippingListService
from .store import Record, RecordPage, RecordStore, iterate_records
from .sync import AssociationSynchronizer

__all__ = [
    "Alert",
    "AlertRef",
    "AlertStatus",
    "AlertType",
    "AssociationSynchronizer",
    "ConcurrencyConflict",
    "ConfigurationError",
    "CustomerRef",
    "EngineConfig",
    "EntitlementAllocator",
    "EntitlementRef",
    "EntitlementStatus",
    "EntitlementStore",
    "InMemoryRecordStore",
    "IssueEligibilitySelector",
    "IssueEntitlement",
    "IssueStatus",
    "LineItem",
    "LineItemOutcome",
    "MagazineIssue",
    "MagazineIssueRef",
    "NewPurchase",
    "NotFoundError",
    "OrderContext",
    "OrderGateway",
    "OrderPaidEvent",
    "OrderProcessingResult",
    "OrderRef",
    "OrderType",
    "Product",
    "ProductRef",
    "Record",
    "RecordPage",
    "RecordStore",
    "RecordStoreOrderGateway",
    "RecordType",
    "Ref",
    "Renewal",
    "RenewalOrderService",
    "ShippingListService",
    "ShortageAlertEmitter",
    "StoreValidationError",
    "Subscription",
    "SubscriptionEngineError",
    "SubscriptionLifecycleManager",
    "SubscriptionRef",
    "SubscriptionStatus",
    "SyncResult",
    "TransientError",
    "VariantRef",
    "classify_order",
    "generate_subscription_id",
    "iterate_records",
    "load_engine_config",
    "parse_issue_count",
    "shortage_kind",
]
