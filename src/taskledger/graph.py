"""
TASKLEDGER - Dependency Graph
=============================
Execution readiness, dependents and cycle detection over direct edges.
"""

from typing import Dict, Iterable, List, Optional

from .schema import ExecutionCheck, Task, TaskStatus


def can_execute(task: Task, tasks: Iterable[Task]) -> ExecutionCheck:
    """
    A task is executable when it is not completed and every direct
    prerequisite exists and is completed. Only direct edges are inspected.
    """
    if task.is_completed:
        return ExecutionCheck(can_execute=False)

    if not task.dependencies:
        return ExecutionCheck(can_execute=True)

    by_id = {t.id: t for t in tasks}
    blocked_by = []
    for dep_id in task.dependency_ids:
        dep_task = by_id.get(dep_id)
        if dep_task is None or not dep_task.is_completed:
            blocked_by.append(dep_id)

    return ExecutionCheck(
        can_execute=not blocked_by,
        blocked_by=blocked_by or None,
    )


def dependents_of(task_id: str, tasks: Iterable[Task]) -> List[Task]:
    """Tasks that name task_id as a prerequisite"""
    return [t for t in tasks if t.id != task_id and task_id in t.dependency_ids]


def ready_tasks(tasks: List[Task]) -> List[Task]:
    """Pending tasks whose prerequisites are all completed"""
    return [
        t for t in tasks
        if t.status == TaskStatus.PENDING and can_execute(t, tasks).can_execute
    ]


def find_cycle(tasks: Iterable[Task]) -> Optional[List[str]]:
    """
    Return one dependency cycle as a list of ids (first id repeated at the
    end), or None. Edges to unknown ids are ignored.
    """
    graph: Dict[str, List[str]] = {t.id: t.dependency_ids for t in tasks}
    WHITE, GREY, BLACK = 0, 1, 2
    color = {node: WHITE for node in graph}

    for root in graph:
        if color[root] != WHITE:
            continue
        path = [root]
        stack = [iter(graph[root])]
        color[root] = GREY
        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                color[path.pop()] = BLACK
                stack.pop()
                continue
            if nxt not in graph:
                continue
            if color[nxt] == GREY:
                return path[path.index(nxt):] + [nxt]
            if color[nxt] == WHITE:
                color[nxt] = GREY
                path.append(nxt)
                stack.append(iter(graph[nxt]))
    return None
