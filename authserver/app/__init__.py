"""
SSO Auth Server
===============

FastAPI backend for an SSO login demo. It redirects users to the identity
provider, completes the authorization-code callback, keeps a server-side
session, and guards protected endpoints with a token verification gate that
silently refreshes expired access tokens.

Packages:
    - auth: login flow, token verification gate and their state
    - config: environment-driven settings
    - models: request/response and domain models
    - main: application factory
"""
