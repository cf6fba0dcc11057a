from enum import StrEnum


class MemberRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    MEMBER = "member"


class Permission(StrEnum):
    MANAGE_MEMBERS = "manageMembers"
    MANAGE_CONTAINER = "manageContainer"
    CREATE_CONTENT = "createContent"
    EDIT_CONTENT = "editContent"
    DELETE_CONTENT = "deleteContent"


class EntityLevel(StrEnum):
    CONTAINER = "container"
    MID_LEVEL = "mid_level"
    LEAF = "leaf"


class AccessReason(StrEnum):
    OK = "ok"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


class PublicationStatus(StrEnum):
    PENDING = "pending"
    PUBLISHED = "published"
    FAILED = "failed"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


# Member listing accepts only these sort keys; anything else falls back to created DESC.
MEMBER_SORT_FIELDS = frozenset({"created", "role", "email", "nickname"})

# Container listing sort keys; anything else falls back to updated DESC.
CONTAINER_SORT_FIELDS = frozenset({"name", "created", "updated"})

# Largest offset accepted by paginated listings (JavaScript's MAX_SAFE_INTEGER).
MAX_OFFSET = 2**53 - 1
