import hashlib

from cell_server.domain.cell_rules import address_to_bytes


def pair_key(address_a: str, address_b: str) -> str:
    """Order-independent key of two participants.

    The two 20-byte identities are sorted into (min, max) order and hashed, so
    pair_key(a, b) == pair_key(b, a).

    Args:
        address_a (str): One participant
        address_b (str): The other participant

    Returns:
        str: sha256 hex digest of min || max
    """
    first, second = sorted((address_to_bytes(address_a), address_to_bytes(address_b)))
    return hashlib.sha256(first + second).hexdigest()
