"""Cell rules that are independent from HTTP and DB.

Rule of thumb:
- OK: constants, validation, pure transformations.
- Not OK: touching DB sessions, Redis, FastAPI, datetime.now(), etc.
"""

ADDRESS_SIZE = 20
AMOUNT_SIZE = 32

EMPTY_ADDRESS = "0x" + "00" * ADDRESS_SIZE

UINT256_MAX = (1 << (8 * AMOUNT_SIZE)) - 1
# Largest stake whose best payout (stake + stake // 2) still fits an amount field.
MAX_STAKE = UINT256_MAX * 2 // 3

MAX_TOTAL_ROUNDS = 10


def normalize_address(value: str) -> str:
    """Return the canonical form of a participant address.

    Args:
        value (str): hex address, with or without the 0x prefix, any case

    Raises:
        ValueError: the value is not exactly 20 bytes of hex

    Returns:
        str: lowercase, 0x-prefixed, 40 hex digits
    """
    text = value.strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if len(text) != ADDRESS_SIZE * 2:
        raise ValueError(f"address must be {ADDRESS_SIZE} bytes: {value!r}")
    bytes.fromhex(text)
    return "0x" + text


def address_to_bytes(address: str) -> bytes:
    return bytes.fromhex(normalize_address(address)[2:])


def address_from_bytes(raw: bytes) -> str:
    return "0x" + raw.hex()


def rounds_from_entropy(entropy: int) -> int:
    """Derive the target round count (1..10) from an entropy value."""
    return 1 + (entropy % MAX_TOTAL_ROUNDS)
