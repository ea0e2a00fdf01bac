from typing import Iterable, Optional

READY = "Ready"
UNKNOWN_PRIORITY = 99

# Lower is healthier
STATUS_PRIORITY = {
    "Ready": 0,
    "NotReady": 1,
    "Pending": 2,
    "OutOfSync": 3,
    "Modified": 4,
    "WaitApplied": 5,
    "ErrApplied": 6,
}

_EXPERIMENTAL = {"Pending", "WaitApplied"}
_DEPRECATED = {"NotReady", "OutOfSync", "Modified", "ErrApplied"}


def status_priority(status: str) -> int:
    return STATUS_PRIORITY.get(status, UNKNOWN_PRIORITY)


def worst_status(statuses: Iterable[Optional[str]]) -> str:
    """
    Folds a list of Fleet display states into the single worst one.
    Missing entries are skipped; an empty input is considered Ready.
    """
    worst = READY
    worst_priority = STATUS_PRIORITY[READY]

    for status in statuses:
        if not status:
            continue
        priority = status_priority(status)
        if priority > worst_priority:
            worst_priority = priority
            worst = status

    return worst


def status_to_lifecycle(status: Optional[str]) -> str:
    # Unknown states stay "production" so vocabulary changes upstream never look like breakage
    if status in _EXPERIMENTAL:
        return "experimental"
    if status in _DEPRECATED:
        return "deprecated"
    return "production"
