"""Single-use verification and cancellation tokens."""

import secrets
from dataclasses import dataclass

DEFAULT_TOKEN_BYTES = 32


@dataclass(frozen=True)
class TokenPair:
    """Tokens minted for one deletion request."""

    verification: str
    cancellation: str


class TokenIssuer:
    """Generates unguessable hex tokens.

    Tokens carry no structure; single use is enforced by the request store,
    which only accepts a token while its request is in a status the token
    applies to.
    """

    def __init__(self, token_bytes: int = DEFAULT_TOKEN_BYTES):
        if token_bytes < 16:
            raise ValueError("token_bytes must be at least 16")
        self.token_bytes = token_bytes

    def issue(self) -> str:
        return secrets.token_hex(self.token_bytes)

    def issue_pair(self) -> TokenPair:
        verification = self.issue()
        cancellation = self.issue()
        while cancellation == verification:
            cancellation = self.issue()
        return TokenPair(verification=verification, cancellation=cancellation)
