"""Record wrappers and result containers."""

from pymirror.models.instance import BoundRecord
from pymirror.models.results import FindResult

__all__ = [
    "BoundRecord",
    "FindResult",
]
