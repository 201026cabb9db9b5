from datetime import datetime, timezone

EVENT_POST_NEW = "post:new"
EVENT_REPLY_NEW = "reply:new"
EVENT_POST_CLOSED = "post:closed"
EVENT_POST_REOPENED = "post:reopened"
EVENT_PONG = "pong"

GROUP_CATEGORY = "category"
GROUP_POST = "post"


def _epoch(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def build_message(event: str, data: dict) -> dict:
    return {"event": event, "data": data}


def post_summary(*, post_id: int, category_key: str, title: str, author: str, created_at: datetime) -> dict:
    return {
        "id": post_id,
        "category_key": category_key,
        "title": title,
        "author": author,
        "created_at": _epoch(created_at),
    }


def reply_summary(*, reply_id: int, post_id: int, body: str, author: str, created_at: datetime) -> dict:
    return {
        "id": reply_id,
        "post_id": post_id,
        "body": body,
        "author": author,
        "created_at": _epoch(created_at),
    }
