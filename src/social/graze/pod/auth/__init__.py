"""
Authentication for Pod requests.

Key Components:
- credentials.py: Resource configuration, mutable tokens and refresh delegates
- dpop.py: DPoP proof claims and signing with a jwcrypto key
- token.py: refresh_token grant against the OAuth token endpoint
- refresh.py: Serialized access token refresh for one set of credentials
"""
