import json, re
from typing import Any, Dict, List


def clean_json_string(s: str) -> str:
    s = s.strip()
    if s.startswith("```json"):
        s = s[7:]
    elif s.startswith("```"):
        s = s[3:]
    if s.endswith("```"):
        s = s[:-3]
    return s.strip()


def extract_json_object(s: str) -> str:
    if not s:
        raise ValueError("Extraction returned no JSON object")

    fence_match = re.search(r"```(?:json)?\s*([\s\S]+?)```", s, re.IGNORECASE)
    if fence_match:
        s = fence_match.group(1)
    else:
        s = clean_json_string(s)

    start = s.find("{")
    end = s.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise ValueError("Extraction returned no JSON object")
    return s[start:end+1]


def parse_json_object(s: str) -> Dict[str, Any]:
    raw = json.loads(extract_json_object(s))
    if not isinstance(raw, dict):
        raise ValueError("Expected a JSON object")
    return raw


def message_text(content: Any) -> str:
    # chat models answer with a string or a list of content blocks
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


def decode_json_list(raw: Any) -> List[Any]:
    """Accept a JSON string or an already decoded list; anything else is empty."""
    if raw is None:
        return []
    if isinstance(raw, list):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return []
        decoded = json.loads(raw)
        if isinstance(decoded, list):
            return decoded
        raise ValueError("Expected a JSON array")
    raise ValueError("Expected a JSON array")
