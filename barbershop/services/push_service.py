"""Firebase push notification service"""

import logging
from pathlib import Path
from typing import Dict, Optional

import firebase_admin
from firebase_admin import credentials, messaging

logger = logging.getLogger(__name__)


class PushNotificationService:
    """Fire-and-forget push sender. Never raises; returns False on any failure."""

    def __init__(self, service_account_path: Optional[str] = None):
        self.service_account_path = service_account_path
        self.app = None
        self.initialized = False

    def _ensure_initialized(self) -> bool:
        if self.initialized:
            return True
        if not self.service_account_path:
            logger.debug("Push notifications disabled: FIREBASE_SERVICE_ACCOUNT_PATH not set")
            return False

        cred_path = Path(self.service_account_path)
        if not cred_path.exists():
            logger.error(f"Firebase credentials not found at {cred_path}")
            return False

        try:
            cred = credentials.Certificate(str(cred_path))
            try:
                self.app = firebase_admin.get_app()
            except ValueError:
                self.app = firebase_admin.initialize_app(cred)
            self.initialized = True
            logger.info("Firebase Admin SDK initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize Firebase: {str(e)}")
        return self.initialized

    def send(
        self,
        device_token: Optional[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> bool:
        if not device_token:
            return False
        if not self._ensure_initialized():
            return False

        try:
            message = messaging.Message(
                notification=messaging.Notification(title=title, body=body),
                data={k: str(v) for k, v in (data or {}).items()},
                token=device_token,
                android=messaging.AndroidConfig(priority="high"),
            )
            response = messaging.send(message, app=self.app)
            logger.info(f"Successfully sent push notification: {response}")
            return True
        except messaging.UnregisteredError:
            logger.warning("Push token is unregistered")
            return False
        except Exception as e:
            logger.error(f"Error sending push notification: {str(e)}")
            return False
