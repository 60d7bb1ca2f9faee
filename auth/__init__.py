"""
Authentication package for the Flask app.

This package signs users in with Microsoft Entra ID via MSAL (OAuth2
Authorization Code Flow) and keeps each user's MSAL token cache server-side,
scoped to their browser session, so pages can acquire Outlook access tokens
silently.
"""
