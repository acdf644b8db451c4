"""
Attachment markup embedded in knowledge base answers.

Answers can carry HTML-escaped tags such as
`&lt;attachment contentType=&quot;image/png&quot; contentUrl=&quot;https://x/y.png&quot; name=&quot;Map&quot; /&gt;`.
The tags are removed from the answer text and returned as attachment specs
that the bot layer sends alongside the text.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

ATTACHMENT_TAG_PATTERN = re.compile(r"&lt;attachment\b(?P<attrs>.*?)/&gt;", re.IGNORECASE | re.DOTALL)
ATTRIBUTE_PATTERN = re.compile(r"(?P<key>[A-Za-z]+)=&quot;(?P<value>.*?)&quot;")


@dataclass(frozen=True)
class AnswerAttachment:
    content_type: str
    content_url: str
    name: Optional[str] = None
    thumbnail_url: Optional[str] = None


def _parse_tag(attrs: str) -> Optional[AnswerAttachment]:
    values = {m.group("key").lower(): m.group("value") for m in ATTRIBUTE_PATTERN.finditer(attrs)}
    content_type = values.get("contenttype")
    content_url = values.get("contenturl")
    if not content_type or not content_url:
        return None
    return AnswerAttachment(
        content_type=content_type,
        content_url=content_url,
        name=values.get("name") or None,
        thumbnail_url=values.get("thumbnailurl") or None,
    )


def extract_attachments(answer: str) -> Tuple[str, List[AnswerAttachment]]:
    """
    Split an answer into display text and attachment specs.

    Tags missing contentType or contentUrl are left in the text untouched.

    Returns:
        (cleaned answer text, attachments in the order they appear)
    """
    if not answer:
        return answer or "", []

    attachments: List[AnswerAttachment] = []

    def _replace(match: re.Match) -> str:
        attachment = _parse_tag(match.group("attrs"))
        if attachment is None:
            return match.group(0)
        attachments.append(attachment)
        return ""

    cleaned = ATTACHMENT_TAG_PATTERN.sub(_replace, answer)
    if attachments:
        cleaned = cleaned.strip()
    return cleaned, attachments
