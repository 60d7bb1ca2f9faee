"""
Outlook (Microsoft Graph) access on behalf of the signed-in user.

The client never handles tokens itself: it asks a `get_access_token` callable
before each call, so token caching and refresh stay in the `auth` package.
"""
