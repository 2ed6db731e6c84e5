"""
Helper utility functions
"""

from typing import Any, Dict
import json


def validate_json_response(content: str) -> Dict[str, Any]:
    """Parse and validate JSON response from LLM"""
    try:
        content = content.strip()

        if content.startswith("```json"):
            content = content[7:].strip()
        elif content.startswith("```"):
            content = content[3:].strip()

        if content.endswith("```"):
            content = content[:-3].strip()

        parsed = json.loads(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON response from LLM: {str(e)}")

    if not isinstance(parsed, dict):
        raise ValueError("Invalid JSON response from LLM: expected an object")
    return parsed


def format_number(value: float) -> str:
    """Render a number without a trailing .0 for whole values"""
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return f"{value:g}" if abs(value) >= 1e15 else str(value)


def dedupe(items: list[str]) -> list[str]:
    """Drop repeated strings, keeping the first occurrence"""
    seen: set[str] = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result
