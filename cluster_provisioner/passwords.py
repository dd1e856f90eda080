"""Administrative password generation."""

import re
import secrets
import string
from typing import Callable, Sequence

from cluster_provisioner.exceptions import WeakPasswordFallback
from cluster_provisioner.logging_config import get_logger

logger = get_logger(__name__)

MIN_LENGTH = 16
MAX_ATTEMPTS = 50
FALLBACK_PASSWORD = "weakpassword"

# Letters and digits 1-9; zero is left out so it cannot be mistaken for "O"
PASSWORD_POLICY = re.compile(r"^[a-zA-Z1-9]+$")

ALPHABET = string.ascii_letters + string.digits


def generate_admin_password(
    length: int = MIN_LENGTH,
    attempts: int = MAX_ATTEMPTS,
    choice: Callable[[Sequence[str]], str] = secrets.choice,
) -> str:
    """Generate a random alphanumeric admin password.

    Each attempt asks for a random minimum of uppercase letters and digits
    (0 to 5 of each) and draws the rest from the full alphabet. Candidates that
    break the policy are discarded.

    Args:
        length: Password length, at least 16
        attempts: Number of candidates to try before giving up
        choice: Random selection function, ``secrets.choice`` by default

    Returns:
        A password matching ``PASSWORD_POLICY``

    Raises:
        WeakPasswordFallback: If no candidate met the policy
    """
    length = max(length, MIN_LENGTH)

    for attempt in range(1, attempts + 1):
        uppercase = secrets.randbelow(6)
        digits = secrets.randbelow(6)

        chars = [choice(string.ascii_uppercase) for _ in range(uppercase)]
        chars += [choice(string.digits) for _ in range(digits)]
        chars += [choice(ALPHABET) for _ in range(length - len(chars))]
        _shuffle(chars)
        candidate = "".join(chars)

        if PASSWORD_POLICY.match(candidate):
            return candidate
        logger.debug(f"Discarded password candidate {attempt}/{attempts}")

    raise WeakPasswordFallback(
        f"Could not generate a password after {attempts} attempts",
        f"Falling back to the placeholder '{FALLBACK_PASSWORD}'; change the admin password",
    )


def _shuffle(chars: list[str]) -> None:
    # Fisher-Yates on the secrets RNG
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
