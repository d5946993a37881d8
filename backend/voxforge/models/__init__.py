from .enums import (
    BillingInterval,
    MediaKind,
    PaymentProvider,
    PaymentStatus,
    PlanTier,
    StorageLocation,
    SubscriptionStatus,
    UsageCategory,
)
from .user import User, UserBase, UserPublic
from .billing import (
    OpayPaymentDetails,
    OpaySubscriptionDetails,
    PaymentHistory,
    PricingPlan,
    PricingPlanPublic,
    StripePaymentDetails,
    StripeSubscriptionDetails,
    Subscription,
    SubscriptionPublic,
)
from .usage import UsageTracking
from .settings import AdminSetting
from .media import MediaAsset, MediaAssetPublic
