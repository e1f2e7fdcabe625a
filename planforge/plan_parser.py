import json
import re
from typing import Any, Dict, List

from .errors import PlanParseError
from .schemas import Plan, Step, coerce_param_value


_ESCAPE_RE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.DOTALL)
_VALID_ESCAPES = set('"\\/bfnrt')


def strip_wrappers(text: str) -> str:
    """Drop fenced-code markers and any prose around the outermost JSON object.

    Only text outside the outermost ``{...}`` is discarded, so fences that appear
    inside string values (markdown file content, for instance) survive.
    """
    cleaned = (text or "").strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        return cleaned[start : end + 1]
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        closing = cleaned.rfind("```")
        if closing != -1:
            cleaned = cleaned[:closing]
    return cleaned.strip()


def _fix_escape(match: "re.Match[str]") -> str:
    body = match.group(1)
    if len(body) == 5 or body in _VALID_ESCAPES:
        return match.group(0)
    return "\\\\" + body


def _drop_trailing_commas(text: str) -> str:
    # Only commas outside string literals; ",]" inside file content is data.
    out: List[str] = []
    in_string = False
    escaped = False
    length = len(text)
    for index, char in enumerate(text):
        if in_string:
            out.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == ",":
            ahead = index + 1
            while ahead < length and text[ahead].isspace():
                ahead += 1
            if ahead < length and text[ahead] in "}]":
                continue
        out.append(char)
    return "".join(out)


def repair_json_text(text: str) -> str:
    repaired = _ESCAPE_RE.sub(_fix_escape, text)
    return _drop_trailing_commas(repaired)


def load_plan_object(text: str) -> Dict[str, Any]:
    cleaned = strip_wrappers(text)
    if not cleaned:
        raise PlanParseError("Failed to parse plan: empty model output")
    try:
        parsed = json.loads(cleaned)
    except ValueError:
        try:
            parsed = json.loads(repair_json_text(cleaned), strict=False)
        except ValueError as exc:
            raise PlanParseError(f"Failed to parse plan: {exc}") from exc
    if not isinstance(parsed, dict):
        raise PlanParseError("Failed to parse plan: top-level value must be a JSON object")
    return parsed


def _coerce_dependencies(raw: Any, step_id: str) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, (str, int)):
        raw = [raw]
    if not isinstance(raw, list):
        raise PlanParseError(f"Failed to parse plan: step {step_id} dependencies must be a list")
    deps: List[str] = []
    for item in raw:
        if isinstance(item, (str, int)) and str(item).strip():
            deps.append(str(item).strip())
        else:
            raise PlanParseError(f"Failed to parse plan: step {step_id} has a malformed dependency")
    return deps


def plan_from_object(obj: Dict[str, Any]) -> Plan:
    raw_steps = obj.get("steps")
    if not isinstance(raw_steps, list):
        raise PlanParseError("Failed to parse plan: 'steps' must be a list")
    steps: List[Step] = []
    for index, raw in enumerate(raw_steps, start=1):
        if not isinstance(raw, dict):
            raise PlanParseError(f"Failed to parse plan: step #{index} is not an object")
        step_id = raw.get("id")
        if step_id is None or not str(step_id).strip():
            raise PlanParseError(f"Failed to parse plan: step #{index} has no id")
        step_id = str(step_id).strip()
        tool = raw.get("tool") or raw.get("capability") or raw.get("capabilityName")
        if not isinstance(tool, str) or not tool.strip():
            raise PlanParseError(f"Failed to parse plan: step {step_id} has no tool")
        params = raw.get("parameters")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise PlanParseError(f"Failed to parse plan: step {step_id} parameters must be an object")
        steps.append(
            Step(
                id=step_id,
                description=str(raw.get("description") or ""),
                tool=tool.strip(),
                parameters={str(k): coerce_param_value(v) for k, v in params.items()},
                dependencies=_coerce_dependencies(raw.get("dependencies"), step_id),
            )
        )
    estimated = obj.get("estimatedTime", obj.get("estimated_time", 0))
    try:
        estimated_time = float(estimated or 0)
    except (TypeError, ValueError):
        estimated_time = 0.0
    plan = Plan(steps=steps, estimated_time=estimated_time)
    plan.rebuild_dependency_map()
    return plan


def parse_plan_text(text: str) -> Plan:
    return plan_from_object(load_plan_object(text))
