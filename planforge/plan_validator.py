import logging
import posixpath
import re
from typing import Dict, List, Optional, Set

from .errors import PlanValidationError
from .schemas import Plan
from .tool_registry import ToolRegistry, is_file_write_tool


logger = logging.getLogger("planforge.plan_validator")

_STEP_ID_RE = re.compile(r"^step_\w+$")


class PlanValidator:
    """Repair and gate model-generated plans before anything executes."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def validate(self, plan: Plan) -> Plan:
        if not plan.steps:
            raise PlanValidationError("plan must have at least one step")
        self._check_unique_ids(plan)
        self.auto_correct_dependencies(plan)
        known = set(plan.step_ids())
        for step in plan.steps:
            if not self.registry.has(step.tool):
                raise PlanValidationError(f"tool '{step.tool}' not found in registry", step.id)
            for dep in step.dependencies:
                if dep not in known:
                    raise PlanValidationError(f"dependency '{dep}' not found", step.id)
        plan.rebuild_dependency_map()
        cycle = self.find_cycle(plan)
        if cycle:
            raise PlanValidationError(f"circular dependency: {' -> '.join(cycle)}")
        return plan

    def _check_unique_ids(self, plan: Plan) -> None:
        seen: Set[str] = set()
        for step in plan.steps:
            if step.id in seen:
                raise PlanValidationError(f"duplicate step id '{step.id}'")
            seen.add(step.id)

    def _file_to_step_map(self, plan: Plan) -> Dict[str, str]:
        mapping: Dict[str, str] = {}
        for step in plan.steps:
            if not is_file_write_tool(step.tool):
                continue
            path = step.literal_param("path")
            if not isinstance(path, str) or not path.strip():
                continue
            path = path.strip()
            mapping[path] = step.id
            name = posixpath.basename(path.replace("\\", "/"))
            if name and name != path:
                mapping.setdefault(name, step.id)
        return mapping

    def _looks_like_step_id(self, value: str, known: Set[str]) -> bool:
        return value in known or bool(_STEP_ID_RE.match(value))

    def auto_correct_dependencies(self, plan: Plan) -> int:
        """Rewrite filename dependencies to the id of the step that writes that file.

        Entries with no matching writer are left as-is so the existence check reports them.
        """
        known = set(plan.step_ids())
        file_map = self._file_to_step_map(plan)
        corrections = 0
        for step in plan.steps:
            if not step.dependencies:
                continue
            corrected: List[str] = []
            for dep in step.dependencies:
                if self._looks_like_step_id(dep, known):
                    target = dep
                else:
                    target = file_map.get(dep) or file_map.get(dep[2:] if dep.startswith("./") else dep)
                    if target:
                        logger.info("Auto-correcting dependency %r -> %r in step %s", dep, target, step.id)
                        corrections += 1
                    else:
                        logger.warning("Could not auto-correct dependency %r in step %s", dep, step.id)
                        target = dep
                if target not in corrected:
                    corrected.append(target)
            step.dependencies = corrected
        if corrections:
            logger.info("Auto-corrected %d file name dependencies to step ids", corrections)
        plan.rebuild_dependency_map()
        return corrections

    def find_cycle(self, plan: Plan) -> Optional[List[str]]:
        visited: Set[str] = set()
        stack: List[str] = []
        on_stack: Set[str] = set()

        def visit(step_id: str) -> Optional[List[str]]:
            visited.add(step_id)
            stack.append(step_id)
            on_stack.add(step_id)
            for dep in plan.dependency_map.get(step_id, []):
                if dep in on_stack:
                    return stack[stack.index(dep):] + [dep]
                if dep not in visited:
                    found = visit(dep)
                    if found:
                        return found
            stack.pop()
            on_stack.discard(step_id)
            return None

        for step in plan.steps:
            if step.id not in visited:
                found = visit(step.id)
                if found:
                    return found
        return None
