import re

GENERIC_MESSAGE = "Something went wrong. You can retry this account."

ERROR_PATTERNS = [
    (re.compile(r"rate.?limit|429", re.I), "The AI service is busy. Retry this account in a few minutes."),
    (re.compile(r"ECONNREFUSED|ENOTFOUND|connection (?:error|refused|reset)|fetch failed|name or service not known", re.I),
     "Couldn't reach the research service. Check your internet connection."),
    (re.compile(r"timeout|ETIMEDOUT|timed?\s*out", re.I), "The research took too long and timed out. Try again."),
    (re.compile(r"SQLITE_BUSY|database is locked", re.I), "The database is temporarily busy. Try again in a moment."),
    (re.compile(r"OPENAI_API_KEY|api key|authentication|unauthorized|401", re.I),
     "API authentication failed. Check your API key configuration."),
    (re.compile(r"quota|billing|insufficient_quota", re.I), "API quota exceeded. Check your billing and usage limits."),
    (re.compile(r"model.*not.*found|model_not_found", re.I),
     "The configured AI model is not available. Check your model settings."),
]


def humanize_error(raw_error: str | None) -> str:
    """Map a raw collaborator/processing error to a user-facing message."""
    if not raw_error:
        return GENERIC_MESSAGE

    for pattern, message in ERROR_PATTERNS:
        if pattern.search(raw_error):
            return message

    return GENERIC_MESSAGE
