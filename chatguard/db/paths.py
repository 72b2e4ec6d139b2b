"""
Document paths and index names.

Logical layout:
    users/{uid}
    usernames/{lowercase name}
    rate_limits/{uid}_{action}
    chats/{chat_id}
    chats/{chat_id}/messages/{message_id}
    reports/{report_id}
    configs/{config_id}
    sanction_events/{event_id}
    audit_logs/{entry_id}
"""

import uuid


def new_id() -> str:
    return uuid.uuid4().hex


def user(uid: str) -> str:
    return f"users/{uid}"


def username(name: str) -> str:
    return f"usernames/{name.lower()}"


def rate_limit(uid: str, action: str) -> str:
    return f"rate_limits/{uid}_{action}"


def chat(chat_id: str) -> str:
    return f"chats/{chat_id}"


def message(chat_id: str, message_id: str) -> str:
    return f"chats/{chat_id}/messages/{message_id}"


def report(report_id: str) -> str:
    return f"reports/{report_id}"


def config(config_id: str) -> str:
    return f"configs/{config_id}"


def sanction_event(event_id: str) -> str:
    return f"sanction_events/{event_id}"


def audit_log(entry_id: str) -> str:
    return f"audit_logs/{entry_id}"


# Secondary indexes (member = document id, score = creation time)


def chat_messages_index(chat_id: str) -> str:
    return f"chats/{chat_id}/messages"


def configs_by_owner_index(uid: str) -> str:
    return f"configs_by_owner/{uid}"


CONFIGS_PUBLIC_INDEX = "configs_public"
REPORTS_PENDING_INDEX = "reports_pending"


def sanction_events_index(uid: str) -> str:
    return f"sanction_events_by_user/{uid}"
