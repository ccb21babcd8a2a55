"""
Epic hierarchy views: grouped boards with progress counts and breadcrumbs.

Epic parent links are followed by key. Links that point at an epic which is
no longer current are treated as absent; links that loop back on themselves
are a data-integrity problem and raise EpicHierarchyError.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Sequence, Set

from .errors import EpicHierarchyError
from .models import EpicBoard, EpicSection, Task

logger = logging.getLogger(__name__)


def _parent_chain(epic_key: str, epic_map: Mapping[str, Task]) -> List[Task]:
    """Return the epic named by `epic_key` followed by its ancestors."""
    chain: List[Task] = []
    visited: Set[str] = set()
    current: Optional[str] = epic_key
    while current is not None and current in epic_map:
        if current in visited:
            keys = [epic.key for epic in chain]
            loop = keys[keys.index(current):] + [current]
            logger.error(f"Epic parent links form a loop: {' -> '.join(loop)}")
            raise EpicHierarchyError(f"Epic parent links form a loop at {current}", loop)
        visited.add(current)
        epic = epic_map[current]
        chain.append(epic)
        current = epic.epic_key
    return chain


def build_epic_breadcrumb(epic_key: Optional[str], epic_map: Mapping[str, Task]) -> Optional[str]:
    """
    Build a root-first breadcrumb such as "Platform > Auth > Login".

    Returns None when there is no epic key or the key is not in `epic_map`.

    Raises:
        EpicHierarchyError: If the parent chain revisits an epic
    """
    if not epic_key:
        return None
    chain = _parent_chain(epic_key, epic_map)
    if not chain:
        return None
    return " > ".join(epic.title for epic in reversed(chain))


def group_tasks_by_epic(tasks: Sequence[Task], epics: Sequence[Task]) -> EpicBoard:
    """
    Group plain tasks under their epics with recursive progress counts.

    Epics whose parent is a known epic are nested under it; every other epic
    is a top-level section. A section's total_count is its direct task count
    plus the total_count of every child section, and closed_count likewise
    counts closed tasks. Tasks without an epic, or whose epic is not in
    `epics`, are returned as unassigned.

    Raises:
        EpicHierarchyError: If some epics are only reachable through a loop
            of parent links
    """
    epic_map: Dict[str, Task] = {epic.key: epic for epic in epics}

    top_level: List[Task] = []
    children: Dict[str, List[Task]] = defaultdict(list)
    for epic in epics:
        if epic.epic_key and epic.epic_key in epic_map:
            children[epic.epic_key].append(epic)
        else:
            top_level.append(epic)

    tasks_by_epic: Dict[str, List[Task]] = defaultdict(list)
    unassigned: List[Task] = []
    for task in tasks:
        if task.epic_key and task.epic_key in epic_map:
            tasks_by_epic[task.epic_key].append(task)
        else:
            unassigned.append(task)

    placed: Set[str] = set()

    def assemble(epic: Task) -> EpicSection:
        placed.add(epic.key)
        direct = tasks_by_epic.get(epic.key, [])
        sub_sections = [assemble(child) for child in children.get(epic.key, [])]
        closed = sum(1 for task in direct if task.status == "closed")
        return EpicSection(
            epic=epic,
            tasks=direct,
            sub_epics=sub_sections,
            closed_count=closed + sum(s.closed_count for s in sub_sections),
            total_count=len(direct) + sum(s.total_count for s in sub_sections),
        )

    sections = [assemble(epic) for epic in top_level]

    stranded = [epic for epic in epics if epic.key not in placed]
    if stranded:
        # Every stranded epic descends from a loop; walking up from one finds it.
        _parent_chain(stranded[0].key, epic_map)
        raise EpicHierarchyError(
            f"Epics unreachable from any top-level epic: {[e.key for e in stranded]}",
            [e.key for e in stranded],
        )

    return EpicBoard(sections=sections, unassigned=unassigned)
