"""Authentication: token lifecycle, credential storage and the PKCE login flow."""

from claimwatch.auth.credential_store import CredentialStore
from claimwatch.auth.flow import AuthorizationFlow, CallbackListener
from claimwatch.auth.oauth import OAuthClient, build_authorization_url
from claimwatch.auth.pkce import PkceContext, s256_challenge
from claimwatch.auth.tokens import TokenManager, TokenPair

__all__ = [
    "AuthorizationFlow",
    "CallbackListener",
    "CredentialStore",
    "OAuthClient",
    "PkceContext",
    "TokenManager",
    "TokenPair",
    "build_authorization_url",
    "s256_challenge",
]
