from __future__ import annotations

from typing import Any, Callable, Iterable


def drive_stream(
    deltas: Iterable[str],
    callback: Callable[[str], Any] | None = None,
    *,
    cumulative: bool = True,
    check_cancelled: Callable[[], None] | None = None,
) -> str:
    """
    Feed streamed text deltas to a script callback, one invocation per increment.

    The callback sees the accumulated text when `cumulative` is set, else each delta. An
    explicit `False` return stops consumption and closes the upstream iterator. Returns the
    text delivered in the last invocation (cumulative) or the accumulated text.
    """
    text = ""
    delivered = ""
    iterator = iter(deltas)
    try:
        for delta in iterator:
            if check_cancelled is not None:
                check_cancelled()
            if not delta:
                continue
            text += delta
            if callback is None:
                continue
            delivered = text
            keep_going = callback(text if cumulative else delta)
            if keep_going is False:
                return delivered
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()
    return text
