# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Plan normalisation and task scheduling.

Plans arrive from three sources: the planner, the reflector on replan, and
the user when editing a plan during confirmation. All of them pass through
``normalize_plan`` before being committed, so the rest of the core can rely
on unique ids and dependency lists that only reference tasks in the plan.
"""
from collections.abc import Mapping
from typing import Any

from loguru import logger

from openjragent.core.state import Plan, Task, TaskStatus, new_id, utc_now


def _coerce_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        return TaskStatus.PENDING


def _coerce_priority(value: Any, position: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return position + 1
    return int(value)


def _as_mapping(task: Task | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(task, Task):
        return task.model_dump()
    return dict(task)


def normalize_plan(raw: Plan | Mapping[str, Any], goal: str | None = None) -> Plan:
    """Normalise a plan produced by a model or edited by a user.

    Fills in missing ids, statuses, priorities and timestamps, makes task ids
    unique, and resolves dependencies given as titles into ids. Dependencies
    that match neither an id nor a title of a task in the plan are dropped,
    as are self references and duplicates. The function is idempotent.

    Args:
        raw: A ``Plan`` or a mapping with a ``tasks`` list.
        goal: Goal text used when the raw plan does not carry one.

    Returns:
        The normalised plan.
    """
    if isinstance(raw, Plan):
        data = raw.model_dump()
    else:
        data = dict(raw)

    now = utc_now()
    raw_tasks = [_as_mapping(t) for t in data.get("tasks") or [] if isinstance(t, Task | Mapping)]

    # First pass: settle ids so dependency references can be resolved.
    seen_ids: set[str] = set()
    ids: list[str] = []
    for entry in raw_tasks:
        task_id = entry.get("id")
        if not isinstance(task_id, str) or not task_id or task_id in seen_ids:
            task_id = new_id()
        seen_ids.add(task_id)
        ids.append(task_id)

    by_title: dict[str, str] = {}
    for entry, task_id in zip(raw_tasks, ids, strict=True):
        title = str(entry.get("title") or "").strip()
        if title and title not in by_title:
            by_title[title] = task_id

    tasks: list[Task] = []
    for position, (entry, task_id) in enumerate(zip(raw_tasks, ids, strict=True)):
        dependencies: list[str] = []
        for ref in entry.get("dependencies") or []:
            ref = str(ref).strip()
            resolved = ref if ref in seen_ids else by_title.get(ref)
            if resolved is None:
                logger.debug("Dropping unresolved dependency", task_id=task_id, dependency=ref)
                continue
            if resolved != task_id and resolved not in dependencies:
                dependencies.append(resolved)

        tasks.append(
            Task(
                id=task_id,
                title=str(entry.get("title") or f"Task {position + 1}"),
                description=str(entry.get("description") or ""),
                status=_coerce_status(entry.get("status", TaskStatus.PENDING)),
                priority=_coerce_priority(entry.get("priority"), position),
                dependencies=tuple(dependencies),
                created_at=entry.get("created_at") or now,
                updated_at=entry.get("updated_at") or now,
                result=entry.get("result"),
                error=entry.get("error"),
            )
        )

    current_task_id = data.get("current_task_id")
    if current_task_id not in seen_ids:
        current_task_id = None

    plan_id = data.get("id")
    return Plan(
        id=plan_id if isinstance(plan_id, str) and plan_id else new_id(),
        goal=str(data.get("goal") or goal or ""),
        tasks=tuple(tasks),
        current_task_id=current_task_id,
        created_at=data.get("created_at") or now,
        updated_at=data.get("updated_at") or now,
    )


def is_task_ready(task: Task, plan: Plan) -> bool:
    """Check whether a pending task has all dependencies completed.

    Args:
        task: Task to check.
        plan: Plan the task belongs to.

    Returns:
        True if the task is pending and every dependency is completed.
    """
    if task.status != TaskStatus.PENDING:
        return False
    for dep_id in task.dependencies:
        dep = plan.get_task(dep_id)
        if dep is None or dep.status != TaskStatus.COMPLETED:
            return False
    return True


def get_next_task(plan: Plan) -> Task | None:
    """Select the next task to execute.

    Args:
        plan: The plan to schedule from.

    Returns:
        The first pending task in plan order whose dependencies are all
        completed, or None when no task is eligible.
    """
    return next((t for t in plan.tasks if is_task_ready(t, plan)), None)


def is_critical(task: Task, threshold: int) -> bool:
    """Whether a failure of ``task`` should halt the run."""
    return task.priority <= threshold
