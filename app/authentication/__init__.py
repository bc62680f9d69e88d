"""
Authentication application.

This app owns the chat identity consumed by the messaging core.

Key components:
    - User model: Handle-based identity with a cached presence flag
    - ProfileView: Read and update the caller's own profile
    - Token endpoints: simplejwt access/refresh pair for REST and websocket auth

Usage:
    from authentication.models import User
"""
