"""Detection of uniformly no-data tiles."""

from __future__ import annotations

from typing import Iterable, Optional

# A 256x256 U8 PNG rendered entirely with the no-data value compresses to one
# of these sizes on ESRI image services.
DEFAULT_BLANK_SIZES = (776, 777)


class BlankTileClassifier:
    """Decide whether a payload is blank, i.e. a recursion-stopping tile.

    This is a heuristic on payload length only: a small image of a single
    colour encodes to a handful of known byte counts. It depends on the
    encoder and export format, so a different service may need different
    sizes. Replacing it with pixel inspection only requires another object
    with the same ``is_blank`` method.
    """

    def __init__(self, sizes: Optional[Iterable[int]] = None) -> None:
        self._sizes = frozenset(DEFAULT_BLANK_SIZES if sizes is None else sizes)

    @property
    def sizes(self) -> frozenset:
        return self._sizes

    def is_blank(self, payload: bytes) -> bool:
        return len(payload) in self._sizes
