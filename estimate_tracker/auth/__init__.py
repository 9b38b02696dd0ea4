"""
Authentication module for the estimate tracker.

This module provides:
- Email/password sign-in with JWT tokens
- Role assignments (admin, user)
- Bootstrap of the first admin account
"""
