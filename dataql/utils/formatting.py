"""Human-readable formatting helpers."""

_UNIT = 1024
_PREFIXES = "KMGTPE"


def format_size(num_bytes: int) -> str:
    """Format a byte count with binary (1024-based) prefixes.

    Args:
        num_bytes: Size in bytes

    Returns:
        String such as "512 B", "1.5 KB" or "2.0 GB"
    """
    if num_bytes < _UNIT:
        return f"{num_bytes} B"

    div = _UNIT
    exp = 0
    n = num_bytes // _UNIT
    while n >= _UNIT:
        div *= _UNIT
        exp += 1
        n //= _UNIT

    return f"{num_bytes / div:.1f} {_PREFIXES[exp]}B"
