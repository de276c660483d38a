"""Internal constants shared across the library."""

BASE_URL = "http://localhost:3030"
USER_AGENT = "pymirror/0.1"

DEFAULT_ID_FIELD = "id"
DEFAULT_QID = "default"
DEFAULT_LIMIT = 10

# Reserved record metadata keys.
TEMP_ID_KEY = "__tempId"
CLONE_KEY = "__isClone"
META_KEYS: frozenset[str] = frozenset({TEMP_ID_KEY, CLONE_KEY})

# ------------------------------------------------------------------
# Query vocabulary
# ------------------------------------------------------------------

# Reserved filter keys pulled out of a query before matching.
FILTERS: tuple[str, ...] = ("$sort", "$limit", "$skip", "$select")
PAGE_FILTERS: tuple[str, ...] = ("$limit", "$skip")

DEFAULT_OPERATORS: tuple[str, ...] = (
    "$eq",
    "$ne",
    "$in",
    "$nin",
    "$lt",
    "$lte",
    "$gt",
    "$gte",
    "$or",
    "$and",
    "$nor",
    "$not",
    "$exists",
)
ADDITIONAL_OPERATORS: tuple[str, ...] = ("$elemMatch", "$all", "$size")
REGEX_OPERATORS: tuple[str, ...] = ("$regex", "$options")
LIKE_OPERATORS: tuple[str, ...] = ("$like", "$iLike", "$ilike", "$notLike", "$notILike")

# ------------------------------------------------------------------
# Service methods & events
# ------------------------------------------------------------------

SERVICE_METHODS: tuple[str, ...] = ("find", "count", "get", "create", "update", "patch", "remove")
SERVICE_EVENTS: tuple[str, ...] = ("created", "updated", "patched", "removed")
