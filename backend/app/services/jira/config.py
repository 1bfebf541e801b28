"""Jira relay module: constants, labels and Redis keys.

Pure constants, no imports from the rest of the service.
"""

# Sentinels for fields missing in Jira
DEPARTMENT_UNSPECIFIED = "unspecified"
FIELD_UNKNOWN = "unknown"
ASSIGNEE_NONE = "unassigned"

# Jira resolution name that counts as "resolved"
RESOLUTION_DONE = "Done"

# Priority name -> emoji; anything else renders as ""
PRIORITY_EMOJI = {
    "Blocker": "🚨",
    "High": "🔴",
    "Medium": "🟡",
    "Low": "🟢",
}

# Rolling-window policy cooldown
ROLLING_WINDOW_DAYS = 3

# Jira search page size
SEARCH_PAGE_SIZE = 100

# Inline button labels
BUTTON_TAKE = "Take"
BUTTON_COMMENT = "Comment"
BUTTON_COMPLETE = "Complete"
BUTTON_OPEN = "Open in Jira"

# Summary labels written into the edited notification
SUMMARY_LABELS = {
    "take": "Taken",
    "comment": "Comment added",
    "complete": "Completed",
}

# Operation names used in failure notices
OPERATION_NAMES = {
    "take": "assign",
    "take_transition": "move to in progress",
    "comment": "add comment",
    "complete": "complete",
}

# User-facing notices
MSG_TASK_NOT_FOUND = "Task {task_id} not found."
MSG_NO_LOGIN = "No Jira login mapped for {username} on {source}."
MSG_ACTIONS_UNAVAILABLE = "Actions are not available for task {task_id}."
MSG_OPERATION_FAILED = "Jira operation failed: {operation} ({task_id})."
MSG_GENERIC_FAILURE = "Something went wrong while processing {task_id}."
MSG_COMMENT_PROMPT = "{name}, reply with the comment for {task_id} (/cancel to abort)."
MSG_COMMENT_CANCELLED = "Comment for {task_id} cancelled."
MSG_COMMENT_EMPTY = "Empty comment ignored for {task_id}."

# Redis keys for pending comment dialogs
REDIS_PENDING_PREFIX = "relay:pending_comment:"
