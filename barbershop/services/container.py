from .booking_service import BookingService
from .loyalty_service import LoyaltyService
from .loyalty_v2_service import LoyaltyV2Service
from .push_service import PushNotificationService
from .timify_client import TimifyClient


class Services:
    """Service graph built once per app from its config."""

    def __init__(self, config, timify_transport=None, push=None):
        self.push = push or PushNotificationService(config.get("FIREBASE_SERVICE_ACCOUNT_PATH"))
        self.timify = TimifyClient.from_config(config, transport=timify_transport)
        self.booking = BookingService(config, self.timify)
        self.loyalty = LoyaltyService(config, self.push)
        self.loyalty_v2 = LoyaltyV2Service(config, self.push)

        self.loyalty.subscribe(self.booking)
