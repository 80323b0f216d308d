from .admin import AdminUser  # noqa: F401
from .package import SubscriptionPackage  # noqa: F401
from .payments import PaymentTransaction, PaymentWebhookEvent  # noqa: F401
from .setting import AppSetting  # noqa: F401
from .user import User  # noqa: F401
