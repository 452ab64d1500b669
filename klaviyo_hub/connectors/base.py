"""
Base Provider Class

The backfill engine and the live listing talk to the marketing platform only
through this interface. Concrete providers handle OAuth token exchange,
refresh, account lookup and profile pagination.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class KlaviyoAPIError(Exception):
    """Non-2xx response from the provider"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(KlaviyoAPIError):
    """Expired or invalid access token (401)"""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message, status_code)


class UpstreamError(KlaviyoAPIError):
    """Any other non-2xx response from the provider"""


class ConfigError(Exception):
    """Required OAuth credential is missing"""


@dataclass
class TokenSet:
    """Result of a code exchange or refresh"""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600


@dataclass
class ProfilePage:
    """One page of raw provider profiles"""
    items: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None
    total: Optional[int] = None


class BaseProvider(ABC):
    """
    Token/identity provider and profile source

    Implementations raise AuthError on 401 and UpstreamError on any other
    non-2xx status. Both carry `status_code`.
    """

    name = "provider"

    @abstractmethod
    def build_redirect_uri(self, origin: str) -> str:
        """OAuth callback URL registered with the provider"""
        pass

    @abstractmethod
    def build_authorize_url(self, origin: str, state: str, code_challenge: str) -> str:
        """
        Consent screen URL

        Raises:
            ConfigError: client credentials are not configured
        """
        pass

    @abstractmethod
    def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenSet:
        """Exchange an authorization code for tokens"""
        pass

    @abstractmethod
    def refresh(self, refresh_token: str) -> TokenSet:
        """Refresh an access token"""
        pass

    @abstractmethod
    def list_accounts(self, access_token: str) -> List[Dict[str, Any]]:
        """
        List account summaries visible to the token

        Returns:
            Raw account resources (`id` + `attributes`)
        """
        pass

    @abstractmethod
    def list_profiles(
        self,
        access_token: str,
        cursor: Optional[str] = None,
        page_size: int = 100
    ) -> ProfilePage:
        """Fetch one page of profiles"""
        pass
