"""
Crawl trap detection based on path segment repetition.
"""

MIN_TRAP_SEGMENTS = 10
TRAP_RATIO = 3


def is_trapped(path: str) -> bool:
    """
    Check whether a URL path looks like a crawl trap.

    Paths with fewer than MIN_TRAP_SEGMENTS segments are never trapped. Longer
    paths are trapped when their segments repeat themselves, e.g. the
    ever-growing paths produced by calendar or pagination loops.
    """
    parts = path.split('/')
    if len(parts) < MIN_TRAP_SEGMENTS:
        return False

    total = 0
    for part in parts[1:]:
        if part:
            total += path.count(part)

    return total // len(parts) >= TRAP_RATIO
