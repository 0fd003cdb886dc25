"""
Authentication application.

Identity for the chat service: the email-based User model, JWT token
endpoints and the JWT middleware that authenticates WebSocket connections.

Usage:
    from authentication.models import User
    from authentication.middleware import JWTAuthMiddleware
"""
