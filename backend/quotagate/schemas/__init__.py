from .organization import Organization, OrganizationCreate, OrganizationView
from .user import User, UserCreate, MemberCreate
from .plan import Plan, PlanCreate
from .subscription import (
    Subscription, SubscriptionChange,
    CurrentSubscription, MetricUsage, PlanChanged
)
from .document import Document, DocumentVersion, DocumentUpdate, DocumentShare
