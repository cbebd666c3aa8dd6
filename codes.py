"""Short human-readable order codes."""
import secrets
import string
from typing import Callable

from errors import ConflictError

CODE_CHARS = string.ascii_uppercase + string.digits
CODE_LENGTH = 6


def order_code(taken: Callable[[str], bool], attempts: int = 12) -> str:
    """Draw codes from ``[A-Z0-9]`` until one is not ``taken``."""
    for _ in range(attempts):
        code = "".join(secrets.choice(CODE_CHARS) for _ in range(CODE_LENGTH))
        if not taken(code):
            return code
    raise ConflictError("Unable to generate a unique order code")
