import re

_URL_HINT_CHARS = set('"?&/<%=')
_REJECT_CHARS = set("?&/<%=")

_VIDEO_ID_PATTERNS = [
    re.compile(r'(?:v|embed|watch\?v)(?:=|/)([^"&?/=%]{11})'),
    re.compile(r'(?:=|/)([^"&?/=%]{11})'),
    re.compile(r'([^"&?/=%]{11})'),
]


def extract_video_id(value: str) -> str:
    """
    Normalize a watch URL, embed URL or bare token to an 11-char video ID.

    Returns "" when nothing usable is found.
    """
    video_id = value or ""

    if "youtu" in video_id or _URL_HINT_CHARS.intersection(video_id):
        # Later patterns are looser; each successful match overrides
        for pattern in _VIDEO_ID_PATTERNS:
            match = pattern.search(video_id)
            if match:
                video_id = match.group(1)

    if _REJECT_CHARS.intersection(video_id):
        return ""
    if len(video_id) < 10:
        return ""

    return video_id
