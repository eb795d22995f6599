"""Generator protocol."""

from __future__ import annotations

import random
from typing import Any, Protocol


class GraphGenerator(Protocol):
    """Produces one self-contained task graph artifact.

    The returned object must either be a mapping or expose `to_dict()` so the
    codec can serialize it.
    """

    def __call__(
        self,
        layer_count: int,
        node_count: int,
        edge_probability: float,
        *,
        rng: random.Random | None = None,
    ) -> Any: ...
