"""
Pod - DPoP authenticated Solid Pod client

This package reads and writes files on a Solid Pod on behalf of one principal.
Every request carries a DPoP bound access token; when the Pod answers 401 the
access token is refreshed once through the OAuth token endpoint and the
request is retried once.

Key Components:
- request: Authenticated request engine (`ResourceRequestClient.execute`)
- resources: File and directory operations built on the engine
- auth: Credentials, DPoP proofs, token exchange and refresh
- http: Middleware chain the engine sends requests through
- app: Settings, metrics and the `pod` command line tool
- errors: Error types carried in failed results
"""
