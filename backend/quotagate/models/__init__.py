# This file serves as the central point for all our models.
# By importing them here, we ensure that SQLAlchemy's metadata
# is aware of all tables when the application starts.

from .base import Base
from .organization import Organization
from .user import User
from .plan import Plan
from .subscription import Subscription
from .usage_record import UsageRecord
from .document import Document, DocumentVersion
