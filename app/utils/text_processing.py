import json
import re
from typing import List, Optional

# Vietnamese-specific letters (tone marks + đ). ASCII-only names never match.
_VIETNAMESE_CHARS = re.compile(
    r'[àáạảãâầấậẩẫăằắặẳẵèéẹẻẽêềếệểễìíịỉĩòóọỏõôồốộổỗơờớợởỡùúụủũưừứựửữỳýỵỷỹđ]',
    re.IGNORECASE
)

# Phrases that only appear in already composed Vietnamese sentences
LOCALIZED_PHRASE_MARKERS = ("được gọi là",)

# Names longer than this are treated as sentences, not bare names
MAX_NAME_LENGTH = 50

# Filler words dropped before keyword matching against the knowledge base
_DISEASE_FILLER = re.compile(r'bệnh|disease|gây hại|trên|của|cây', re.IGNORECASE)
_CROP_FILLER = re.compile(r'cây|plant', re.IGNORECASE)
_TOKEN_SPLIT = re.compile(r'[\s,]+')


def has_vietnamese_chars(text: str) -> bool:
    """True when *text* contains at least one Vietnamese-only letter."""
    return bool(text) and bool(_VIETNAMESE_CHARS.search(text))


def needs_vietnamese_translation(name: Optional[str]) -> bool:
    """
    Default "needs translation?" predicate for vendor names.

    Skips names that already carry Vietnamese letters, look like a full
    sentence (too long) or contain a known localized phrase.
    """
    if not name or not name.strip():
        return False
    if has_vietnamese_chars(name):
        return False
    if len(name) > MAX_NAME_LENGTH:
        return False
    if any(marker in name for marker in LOCALIZED_PHRASE_MARKERS):
        return False
    return True


def _keywords(text: Optional[str], filler: re.Pattern) -> List[str]:
    if not text:
        return []
    cleaned = filler.sub('', text.lower()).strip()
    seen = []
    for token in _TOKEN_SPLIT.split(cleaned):
        if len(token) > 2 and token not in seen:
            seen.append(token)
    return seen


def extract_disease_keywords(disease_name: Optional[str]) -> List[str]:
    """'Bệnh đốm lá trên cà chua' -> ['đốm', 'chua'] style keywords"""
    return _keywords(disease_name, _DISEASE_FILLER)


def extract_crop_keywords(crop_name: Optional[str]) -> List[str]:
    return _keywords(crop_name, _CROP_FILLER)


def matches_any_keyword(values, keywords: List[str]) -> bool:
    """Case-insensitive substring match of any keyword in any value."""
    if not keywords:
        return True
    if isinstance(values, str):
        values = [values]
    lowered = [str(v).lower() for v in (values or [])]
    return any(kw in value for kw in keywords for value in lowered)


def parse_llm_json(raw_text: str) -> dict:
    """
    Parse a JSON object out of an LLM reply.
    Handles ```json fences and leading/trailing chatter.
    Raises ValueError when no JSON object can be recovered.
    """
    if not raw_text:
        raise ValueError("empty LLM response")

    text = raw_text.strip()
    if text.startswith("```"):
        text = re.sub(r'^```(?:json)?\s*', '', text)
        text = re.sub(r'\s*```$', '', text)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        match = re.search(r'\{.*\}', text, re.DOTALL)
        if not match:
            raise ValueError("no JSON object in LLM response")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON in LLM response: {e}")

    if not isinstance(data, dict):
        raise ValueError("LLM response JSON is not an object")
    return data


def clean_generated_text(text: Optional[str]) -> str:
    """Trim whitespace and collapse 3+ blank lines produced by the LLM."""
    if not text:
        return ""
    text = text.strip()
    return re.sub(r'\n{3,}', '\n\n', text)
