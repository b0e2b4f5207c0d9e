"""Server-side OAuth ``state`` tokens.

Each authorization round-trip gets a random state token stored in the KV
store under ``oauth_state:<token>`` with a TTL. The callback must present
it, and it can be redeemed once, which protects against CSRF and replayed
callbacks. The record also carries the PKCE verifier and the redirect URI
so the token exchange can repeat them exactly.

A second key, ``oauth_pending:<user>:<connector>``, marks that a user has
an unfinished flow; connection state reports it as AUTHORIZING.
"""

import base64
import hashlib
import secrets
import time

from pydantic import BaseModel, Field, ValidationError

from connector_core.exceptions import OAuthStateError
from connector_core.protocols import KVStore


class OAuthState(BaseModel):
    """A pending authorization, as stored between redirect and callback."""

    state: str
    connector_key: str
    user_id: str
    redirect_uri: str
    code_verifier: str | None = Field(default=None, repr=False)
    created_at: float = Field(default_factory=time.time)


def pkce_pair() -> tuple[str, str]:
    """Return a fresh ``(code_verifier, S256 code_challenge)`` pair."""
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    return verifier, challenge


class OAuthStateStore:
    """Issues, inspects and redeems state tokens.

    Args:
        kv: Backing store; its TTL support expires abandoned flows
        state_ttl: Seconds a flow may take before its state is rejected
    """

    STATE_PREFIX = "oauth_state:"
    PENDING_PREFIX = "oauth_pending:"

    def __init__(self, kv: KVStore, state_ttl: int = 600) -> None:
        self.kv = kv
        self.state_ttl = state_ttl

    def _pending(self, user_id: str, connector_key: str) -> str:
        return f"{self.PENDING_PREFIX}{user_id}:{connector_key}"

    async def issue(
        self,
        connector_key: str,
        user_id: str,
        redirect_uri: str,
        use_pkce: bool = True,
    ) -> tuple[OAuthState, str | None]:
        """Start a flow.

        Returns:
            The stored state and the PKCE challenge (None when PKCE is off)
        """
        verifier, challenge = pkce_pair() if use_pkce else (None, None)
        oauth_state = OAuthState(
            state=secrets.token_urlsafe(32),
            connector_key=connector_key,
            user_id=user_id,
            redirect_uri=redirect_uri,
            code_verifier=verifier,
        )

        await self.kv.set(
            self.STATE_PREFIX + oauth_state.state,
            oauth_state.model_dump_json().encode(),
            ttl=self.state_ttl,
        )
        # The newest flow wins the pending marker
        await self.kv.set(
            self._pending(user_id, connector_key),
            oauth_state.state.encode(),
            ttl=self.state_ttl,
        )
        return oauth_state, challenge

    async def is_pending(self, user_id: str, connector_key: str) -> bool:
        return await self.kv.exists(self._pending(user_id, connector_key))

    async def peek(self, state: str) -> OAuthState | None:
        """Look up a state without redeeming it; unreadable records count as absent."""
        raw = await self.kv.get(self.STATE_PREFIX + state) if state else None
        if raw is None:
            return None
        try:
            return OAuthState.model_validate_json(raw)
        except ValidationError:
            return None

    async def consume(self, state: str) -> OAuthState:
        """Redeem a state.

        Raises:
            OAuthStateError: If the state is unknown, expired or already redeemed
        """
        oauth_state = await self.peek(state)
        # Only the caller whose delete removed the record may proceed
        if oauth_state is None or not await self.kv.delete(self.STATE_PREFIX + state):
            raise OAuthStateError("Invalid or expired OAuth state")

        pending_key = self._pending(oauth_state.user_id, oauth_state.connector_key)
        if await self.kv.get(pending_key) == state.encode():
            await self.kv.delete(pending_key)
        return oauth_state
