"""Hashtag normalization."""

from typing import Iterable, List, Optional

from pawfeed.errors import ValidationError


def normalize_tag(raw: Optional[str]) -> str:
    """Strip leading '#', surrounding whitespace and case.

    ``"#강아지"``, ``" 강아지 "`` and ``"#Puppy"`` become ``"강아지"``, ``"강아지"`` and
    ``"puppy"``. Returns an empty string when nothing is left.
    """
    if not raw:
        return ""
    return raw.strip().lstrip("#").strip().lower()


def normalize_tags(raw_tags: Optional[Iterable[str]], max_tags: int = 10, max_length: int = 30) -> List[str]:
    """
    Normalize and de-duplicate an uploader's tag list, keeping first-seen order.

    Args:
        raw_tags: Tags as typed by the uploader
        max_tags: Maximum number of distinct tags
        max_length: Maximum length of one tag after normalization

    Returns:
        Normalized tags

    Raises:
        ValidationError: If a tag is too long or there are too many tags
    """
    tags: List[str] = []
    for raw in raw_tags or []:
        tag = normalize_tag(raw)
        if not tag or tag in tags:
            continue
        if len(tag) > max_length:
            raise ValidationError(f"Tag '{tag[:max_length]}...' exceeds {max_length} characters")
        tags.append(tag)

    if len(tags) > max_tags:
        raise ValidationError(f"At most {max_tags} tags are allowed")
    return tags
