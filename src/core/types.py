"""Type aliases for dynamic data structures throughout the application.

Documents and filters exchanged with the store cannot be statically typed.
These aliases give them a name so signatures say what they carry.
"""

from collections.abc import Mapping
from typing import Any

# A raw BSON-compatible document as read from or written to a collection
type RawDocument = dict[str, Any]

# A MongoDB query filter, e.g. {"name": "x", "age": {"$gt": 3}}
type FilterSpec = Mapping[str, Any]

# A MongoDB sort specification as (field, direction) pairs
type SortSpec = list[tuple[str, int]]

# Context dictionary for logging additional information
type LogContext = dict[str, Any]

# Context dictionary for error details and debugging information
type ErrorContext = dict[str, Any]
