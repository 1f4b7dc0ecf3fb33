from __future__ import annotations

import secrets
import string
import time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from dbcreds.utils.exceptions import PolicyViolationError

_ALPHANUMERIC = string.ascii_letters + string.digits


class UsernameMetadata(BaseModel):
    """Operator supplied naming hints for a new user."""

    display_name: str = ""
    role_name: str = ""


class UsernamePolicy(BaseModel):
    """How generated usernames are assembled.

    The layout is ``prefix_display_role_random_unixtime``. The random part
    and the timestamp together form the uniqueness suffix, which is never
    truncated.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str = "v"
    display_name_length: int = Field(default=15, ge=0)
    role_name_length: int = Field(default=15, ge=0)
    random_length: int = Field(default=20, ge=1)
    separator: str = "_"
    lowercase: bool = False


def _random_string(length: int) -> str:
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(length))


def uniqueness_suffix(policy: UsernamePolicy, now: Optional[float] = None) -> str:
    """Random characters followed by the Unix time."""
    timestamp = int(time.time() if now is None else now)
    return f"{_random_string(policy.random_length)}{policy.separator}{timestamp}"


def generate_username(
        metadata: UsernameMetadata,
        max_length: int,
        policy: Optional[UsernamePolicy] = None,
        now: Optional[float] = None
) -> str:
    """Build a backend-legal username.

    Args:
        metadata: Display and role name hints
        max_length: Longest identifier the backend accepts
        policy: Assembly rules, defaults to :class:`UsernamePolicy`
        now: Override for the timestamp part

    Returns:
        str: The username, at most ``max_length`` characters

    Raises:
        PolicyViolationError: If ``max_length`` cannot hold the uniqueness suffix
    """
    policy = policy or UsernamePolicy()
    suffix = uniqueness_suffix(policy, now)
    if max_length < len(suffix):
        raise PolicyViolationError(
            f"Maximum username length {max_length} is shorter than the {len(suffix)} character uniqueness suffix",
            max_length=max_length
        )

    segments = [
        policy.prefix,
        metadata.display_name[:policy.display_name_length],
        metadata.role_name[:policy.role_name_length],
    ]
    head = policy.separator.join(segment for segment in segments if segment)

    budget = max_length - len(suffix) - len(policy.separator)
    head = head[:max(budget, 0)]
    if policy.separator:
        head = head.rstrip(policy.separator)
    username = f"{head}{policy.separator}{suffix}" if head else suffix

    return username.lower() if policy.lowercase else username


def validate_password(password: Any, min_length: int = 1) -> str:
    """Accept a host supplied password verbatim.

    Raises:
        PolicyViolationError: If the password is not a string or is too short
    """
    if not isinstance(password, str):
        raise PolicyViolationError(f"Password must be a string, got {type(password).__name__}")
    if len(password) < min_length:
        raise PolicyViolationError(
            f"Password must be at least {min_length} characters",
            min_length=min_length
        )
    return password
