"""Cross-platform work item type resolution.

``map_type`` is a pure function: the same input always yields the same
result, so adapters and the migration pipeline can share it.
"""

import re
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from ..models.work_item import ProcessTemplate, Provider, WorkItemType

UNCHECKED_ITEM = re.compile(r'^\s*[-*]\s+\[ \]', re.MULTILINE)
CHECKLIST_EPIC_THRESHOLD = 3
FEATURE_CHILD_THRESHOLD = 2

TYPE_NAMES: Dict[str, WorkItemType] = {
    'epic': WorkItemType.EPIC,
    'feature': WorkItemType.FEATURE,
    'story': WorkItemType.STORY,
    'user story': WorkItemType.STORY,
    'product backlog item': WorkItemType.STORY,
    'pbi': WorkItemType.STORY,
    'enhancement': WorkItemType.STORY,
    'requirement': WorkItemType.STORY,
    'bug': WorkItemType.BUG,
    'incident': WorkItemType.BUG,
    'defect': WorkItemType.BUG,
    'task': WorkItemType.TASK,
    'test': WorkItemType.TEST,
    'test case': WorkItemType.TEST,
    'issue': WorkItemType.ISSUE,
}

# Checked in order; the first label that matches wins.
LABEL_KEYWORDS: Tuple[Tuple[str, WorkItemType], ...] = (
    ('epic', WorkItemType.EPIC),
    ('bug', WorkItemType.BUG),
    ('task', WorkItemType.TASK),
    ('enhancement', WorkItemType.STORY),
    ('feature', WorkItemType.FEATURE),
    ('story', WorkItemType.STORY),
    ('test', WorkItemType.TEST),
)

AZURE_TYPES: Dict[ProcessTemplate, Dict[WorkItemType, str]] = {
    ProcessTemplate.AGILE: {
        WorkItemType.EPIC: 'Epic',
        WorkItemType.FEATURE: 'Feature',
        WorkItemType.STORY: 'User Story',
        WorkItemType.BUG: 'Bug',
        WorkItemType.TASK: 'Task',
        WorkItemType.TEST: 'Test Case',
        WorkItemType.ISSUE: 'User Story',
    },
    ProcessTemplate.SCRUM: {
        WorkItemType.EPIC: 'Epic',
        WorkItemType.FEATURE: 'Feature',
        WorkItemType.STORY: 'Product Backlog Item',
        WorkItemType.BUG: 'Bug',
        WorkItemType.TASK: 'Task',
        WorkItemType.TEST: 'Test Case',
        WorkItemType.ISSUE: 'Product Backlog Item',
    },
    ProcessTemplate.BASIC: {
        WorkItemType.EPIC: 'Epic',
        WorkItemType.FEATURE: 'Epic',
        WorkItemType.STORY: 'Issue',
        WorkItemType.BUG: 'Issue',
        WorkItemType.TASK: 'Task',
        WorkItemType.TEST: 'Task',
        WorkItemType.ISSUE: 'Issue',
    },
}

GITLAB_TYPES: Dict[WorkItemType, str] = {
    WorkItemType.EPIC: 'epic',
    WorkItemType.FEATURE: 'issue',
    WorkItemType.STORY: 'issue',
    WorkItemType.BUG: 'incident',
    WorkItemType.TASK: 'task',
    WorkItemType.TEST: 'test_case',
    WorkItemType.ISSUE: 'issue',
}

GITHUB_TYPE_LABELS: Dict[WorkItemType, Optional[str]] = {
    WorkItemType.EPIC: 'epic',
    WorkItemType.FEATURE: 'enhancement',
    WorkItemType.STORY: 'enhancement',
    WorkItemType.BUG: 'bug',
    WorkItemType.TASK: 'task',
    WorkItemType.TEST: 'test',
    WorkItemType.ISSUE: None,
}


class TypeMappingInput(BaseModel):
    """Signals available for resolving a work item's type."""

    source_provider: Provider
    native_type: Optional[str] = Field(
        default=None, description='Explicit platform type, when the platform has one'
    )
    target_provider: Optional[Provider] = None
    target_process: ProcessTemplate = ProcessTemplate.AGILE
    labels: List[str] = Field(default_factory=list)
    child_count: int = 0
    description: str = ''
    is_pull_request: bool = False


class TypeMappingResult(BaseModel):
    """Resolved type plus what the target needs to preserve it."""

    type: WorkItemType
    target_type: Optional[str] = Field(
        default=None, description='Native type name on the target platform'
    )
    tags: List[str] = Field(default_factory=list)
    rationale: List[str] = Field(default_factory=list)


def _key(name: str) -> str:
    return re.sub(r'[\s_\-]+', ' ', name.strip().lower())


def normalize_type(name: Optional[str]) -> Optional[WorkItemType]:
    """Map any platform's type name to the canonical type.

    Args:
        name: Native type name, e.g. ``Product Backlog Item`` or ``test_case``

    Returns:
        Canonical type, or None for unknown names
    """
    if not name:
        return None
    return TYPE_NAMES.get(_key(name))


def count_unchecked_items(description: str) -> int:
    """Count unchecked markdown checklist entries."""
    return len(UNCHECKED_ITEM.findall(description or ''))


def _match_label(labels: List[str]) -> Optional[Tuple[str, WorkItemType]]:
    lowered = set()
    for label in labels:
        value = label.strip().lower()
        for prefix in ('type::', 'type:'):
            if value.startswith(prefix):
                value = value[len(prefix):].strip()
        lowered.add(value)

    for keyword, work_item_type in LABEL_KEYWORDS:
        if keyword in lowered:
            return keyword, work_item_type
    return None


def _infer(data: TypeMappingInput, rationale: List[str]) -> Tuple[WorkItemType, List[str]]:
    tags: List[str] = []

    match = _match_label(data.labels)
    if match is not None:
        keyword, work_item_type = match
        rationale.append(f"label '{keyword}' implies {work_item_type.value}")
        if keyword == 'enhancement':
            if data.child_count >= FEATURE_CHILD_THRESHOLD:
                rationale.append(
                    f'enhancement with {data.child_count} children becomes feature'
                )
                return WorkItemType.FEATURE, tags
            tags.append('enhancement')
        return work_item_type, tags

    if data.is_pull_request:
        rationale.append('pull request treated as feature')
        return WorkItemType.FEATURE, tags

    unchecked = count_unchecked_items(data.description)
    if unchecked >= CHECKLIST_EPIC_THRESHOLD:
        rationale.append(f'{unchecked} unchecked checklist items imply epic')
        return WorkItemType.EPIC, tags

    rationale.append('no type signal, defaulting to issue')
    return WorkItemType.ISSUE, tags


def _target_type(
    data: TypeMappingInput,
    work_item_type: WorkItemType,
    native: Optional[str],
    tags: List[str],
    rationale: List[str],
) -> Optional[str]:
    target = data.target_provider

    if target == Provider.AZURE:
        target_type = AZURE_TYPES[data.target_process][work_item_type]
        if data.target_process == ProcessTemplate.BASIC:
            preserved = {
                WorkItemType.BUG: 'incident' if native == 'incident' else 'bug',
                WorkItemType.TEST: 'test-case',
                WorkItemType.FEATURE: 'feature',
            }.get(work_item_type)
            if preserved:
                tags.append(preserved)
                rationale.append(
                    f"basic process has no {work_item_type.value} type, tagged '{preserved}'"
                )
        rationale.append(f"{data.target_process.value} process type '{target_type}'")
        return target_type

    if target == Provider.GITLAB:
        target_type = GITLAB_TYPES[work_item_type]
        if (
            data.source_provider == Provider.AZURE
            and native
            and native not in ('issue', 'epic')
        ):
            tag = 'azure-' + native.replace(' ', '-')
            tags.append(tag)
            rationale.append(f"azure type kept as tag '{tag}'")
        rationale.append(f"gitlab type '{target_type}'")
        return target_type

    if target == Provider.GITHUB:
        target_type = GITHUB_TYPE_LABELS[work_item_type]
        if work_item_type in (WorkItemType.FEATURE, WorkItemType.STORY):
            tags.append(work_item_type.value)
        if native == 'incident':
            tags.append('incident')
        rationale.append(f"github type label {target_type!r}")
        return target_type

    return None


def map_type(data: TypeMappingInput) -> TypeMappingResult:
    """Resolve the canonical and target type of a work item.

    An explicit native type always wins. Label keywords, checklist density
    and child count are consulted only when no usable native type is given.

    Args:
        data: Type signals for one item

    Returns:
        Canonical type, target native type, preserving tags and rationale
    """
    rationale: List[str] = []
    tags: List[str] = []
    native = _key(data.native_type) if data.native_type else None

    work_item_type = normalize_type(data.native_type)
    if work_item_type is not None:
        rationale.append(
            f"native type '{data.native_type}' maps to {work_item_type.value}"
        )
    else:
        if data.native_type:
            rationale.append(f"unknown native type '{data.native_type}' ignored")
        work_item_type, tags = _infer(data, rationale)

    target_type = _target_type(data, work_item_type, native, tags, rationale)

    deduped: List[str] = []
    for tag in tags:
        if tag not in deduped:
            deduped.append(tag)

    return TypeMappingResult(
        type=work_item_type,
        target_type=target_type,
        tags=deduped,
        rationale=rationale,
    )
