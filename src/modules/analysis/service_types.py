"""Service types and analysis modes."""

from enum import Enum


class ServiceType(str, Enum):
    """Kinds of analysis a client can request."""

    VIDEO = "video"
    LINK = "link"
    SOCIAL_POST = "social_post"
    COMMENTS = "comments"
    SOCIAL_FULL_AUDIT = "social_full_audit"

    @classmethod
    def _missing_(cls, value):
        # Accept the camelCase keys older web clients still send
        if isinstance(value, str):
            return _LEGACY_KEYS.get(value)
        return None

    @property
    def is_token_metered(self) -> bool:
        return self is ServiceType.VIDEO


_LEGACY_KEYS = {
    "linkArticle": ServiceType.LINK,
    "socialPost": ServiceType.SOCIAL_POST,
    "comment": ServiceType.COMMENTS,
    "commentAnalysis": ServiceType.COMMENTS,
    "socialFullAudit": ServiceType.SOCIAL_FULL_AUDIT,
}


class AnalysisMode(str, Enum):
    STANDARD = "standard"
    DEEP = "deep"
