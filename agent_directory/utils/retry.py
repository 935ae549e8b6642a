INITIAL_BACKOFF = 30.0
MAX_BACKOFF = 5 * 60 * 60.0


def backoff_delay(attempt: int, initial: float = INITIAL_BACKOFF, maximum: float = MAX_BACKOFF) -> float:
    """Exponential backoff before retry ``attempt`` (0-based).

    Waits 30, 60, 120, ... seconds, never more than five hours.
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")
    return min(initial * (2 ** min(attempt, 32)), maximum)
