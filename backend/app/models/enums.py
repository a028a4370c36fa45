"""
Notification enumerations.

Declaration order of NotificationType is significant: analytics uses it
as the final tie-break when ranking categories.
"""

import enum


class NotificationType(str, enum.Enum):
    """
    Notification category.

    Categories:
        SYSTEM: Platform announcements (welcome, maintenance)
        MESSAGE: New chat message from another user
        RESERVATION: Booking lifecycle updates
        REVIEW: A review was posted
        PAYMENT: Payment processed or failed
        MARKETING: Campaigns and recommendations
    """
    SYSTEM = "system"
    MESSAGE = "message"
    RESERVATION = "reservation"
    REVIEW = "review"
    PAYMENT = "payment"
    MARKETING = "marketing"


class Channel(str, enum.Enum):
    PUSH = "push"
    EMAIL = "email"
    IN_APP = "in_app"


class DevicePlatform(str, enum.Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class UserRole(str, enum.Enum):
    """
    Roles carried in tokens issued by the auth service.

    Roles:
        USER: Marketplace traveller or attender
        ADMIN: Operator with access to analytics
        SERVICE: Internal event producer (booking, messaging, payment...)
    """
    USER = "USER"
    ADMIN = "ADMIN"
    SERVICE = "SERVICE"
