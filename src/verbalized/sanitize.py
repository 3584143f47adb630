import re

MAX_ERROR_LENGTH = 200

_API_KEY_RE = re.compile(r"sk-[a-zA-Z0-9]+")
_BEARER_RE = re.compile(r"Bearer\s+[^\s]+")
_URL_RE = re.compile(r"https?://[^\s]+")


def sanitize_error(error: object) -> str:
    """Strip credentials and URLs from an upstream error and bound its length."""

    if isinstance(error, BaseException):
        message = str(error) or error.__class__.__name__
    else:
        message = str(error or "")

    sanitized = _API_KEY_RE.sub("[REDACTED]", message)
    sanitized = _BEARER_RE.sub("Bearer [REDACTED]", sanitized)
    sanitized = _URL_RE.sub("[URL]", sanitized)

    if len(sanitized) > MAX_ERROR_LENGTH:
        return sanitized[:MAX_ERROR_LENGTH] + "..."
    return sanitized


__all__ = ["sanitize_error", "MAX_ERROR_LENGTH"]
