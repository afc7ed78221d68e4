"""
Authentication application.

This app provides the user identity the chat core consumes: an email-based
user with a marketplace role, and JWT tokens for REST and WebSocket clients.

Key components:
    - User model: Custom email-based user with a role
    - UserManager: create_user / create_superuser
    - Token endpoints: djangorestframework-simplejwt

Usage:
    from authentication.models import User, UserRole
"""
