"""Models package."""

from .user import User
from .feature_cost import FeatureCost
from .usage_record import UsageRecord
from .credit_grant import CreditGrant
from .plan import Plan
from .subscription import Subscription
from .subscription_payment import SubscriptionPayment
