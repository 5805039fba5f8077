"""
Swagger/OpenAPI configuration for the Barbershop Backend API
"""

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec",
            "route": "/apispec.json",
            "rule_filter": lambda rule: True,
            "model_filter": lambda tag: True,
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/api/docs",
}

SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "Barbershop Backend API",
        "description": "Booking through the scheduling provider, legacy loyalty card and loyalty points with rewards",
        "version": "1.0.0",
    },
    "host": "",
    "basePath": "/",
    "schemes": ["http", "https"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": 'JWT Authorization header using the Bearer scheme. Example: "Authorization: Bearer {token}"',
        }
    },
    "tags": [
        {"name": "Authentication", "description": "Signup, login and device tokens"},
        {"name": "Booking", "description": "Branches, availability, reserve and confirm"},
        {"name": "Loyalty", "description": "Legacy stamp card, point card and coupons"},
        {"name": "Loyalty v2", "description": "Points, tiers, rewards and vouchers"},
        {"name": "Admin", "description": "Staff QR scans"},
    ],
    "definitions": {
        "Error": {
            "type": "object",
            "properties": {
                "status": {"type": "string", "example": "error"},
                "error": {
                    "type": "object",
                    "properties": {
                        "code": {"type": "string", "example": "INVALID_OR_EXPIRED_QR"},
                        "message": {"type": "string"},
                        "fields": {"type": "object"},
                    },
                },
            },
        },
        "QRCode": {
            "type": "object",
            "properties": {
                "qrPayload": {"type": "string", "example": "BC|v1|E|3f2a..."},
                "expiresAt": {"type": "string", "format": "date-time"},
            },
        },
        "LoyaltyAccount": {
            "type": "object",
            "properties": {
                "currentBalance": {"type": "integer"},
                "lifetimeEarned": {"type": "integer"},
                "tier": {"type": "string", "enum": ["Bronze", "Silver", "Gold", "Platinum"]},
                "enrolledAt": {"type": "string", "format": "date-time"},
                "nextTier": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "remainingPoints": {"type": "integer"},
                    },
                },
            },
        },
        "Booking": {
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "startDateTime": {"type": "string", "format": "date-time"},
                "status": {"type": "string", "enum": ["CONFIRMED", "CANCELED"]},
                "branch": {"type": "object"},
                "service": {"type": "object"},
            },
        },
    },
}
