"""Public key validation."""

from .errors import ValidationError

BASE64_KEY_LENGTH = 44


def validate_public_key(public_key: str) -> None:
    """Ensure that the given public key is a valid ed25519 feed id.

    Raises:
        ValidationError: With the reason the key was rejected.
    """
    if not public_key.startswith("@"):
        raise ValidationError("expected '@' sigil as first character")

    dot_index = public_key.rfind(".")
    if dot_index == -1:
        raise ValidationError("no dot index was found")

    if not public_key.endswith(".ed25519"):
        raise ValidationError("hashing algorithm must be ed25519")

    if len(public_key[1:dot_index]) != BASE64_KEY_LENGTH:
        raise ValidationError("base64 data length is incorrect")


def is_valid_public_key(public_key: str) -> bool:
    try:
        validate_public_key(public_key)
    except ValidationError:
        return False
    return True
