"""Well-known field names, states and link names."""

SYSTEM_TITLE = "system.title"
SYSTEM_DESCRIPTION = "system.description"
SYSTEM_DESCRIPTION_MARKUP = "system.description.markup"
SYSTEM_DESCRIPTION_RENDERED = "system.description.rendered"
SYSTEM_STATE = "system.state"
SYSTEM_ASSIGNEES = "system.assignees"
SYSTEM_CREATOR = "system.creator"
SYSTEM_CREATED_AT = "system.created_at"
SYSTEM_UPDATED_AT = "system.updated_at"
SYSTEM_ORDER = "system.order"
SYSTEM_ITERATION = "system.iteration"
SYSTEM_AREA = "system.area"
SYSTEM_CODEBASE = "system.codebase"
SYSTEM_REMOTE_ITEM_ID = "system.remote_item_id"

# maintained by the store, never taken from input
STORE_MAINTAINED_FIELDS = frozenset({SYSTEM_CREATED_AT, SYSTEM_UPDATED_AT, SYSTEM_ORDER})

STATE_NEW = "new"
STATE_OPEN = "open"
STATE_IN_PROGRESS = "in progress"
STATE_RESOLVED = "resolved"
STATE_CLOSED = "closed"

STATES = [STATE_NEW, STATE_OPEN, STATE_IN_PROGRESS, STATE_RESOLVED, STATE_CLOSED]

PARENT_OF = "parent of"
CHILD_OF = "child of"

ORDER_SPACING = 1000.0

# LIMIT and OFFSET are signed 64-bit on SQLite and PostgreSQL
MAX_PAGE_VALUE = 2**63 - 1
