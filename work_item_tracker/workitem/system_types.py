"""
System work item types and link types.

These are seeded by ``init_database`` and the initial migration. Their IDs
are fixed so that clients and fixtures can refer to them directly.
"""

from typing import Dict, List
from uuid import UUID

import structlog
from sqlalchemy.orm import Session

from ..db.models import WorkItemLinkTypeModel, WorkItemTypeModel
from .constants import (
    CHILD_OF,
    PARENT_OF,
    STATES,
    SYSTEM_AREA,
    SYSTEM_ASSIGNEES,
    SYSTEM_CODEBASE,
    SYSTEM_CREATED_AT,
    SYSTEM_CREATOR,
    SYSTEM_DESCRIPTION,
    SYSTEM_ITERATION,
    SYSTEM_ORDER,
    SYSTEM_REMOTE_ITEM_ID,
    SYSTEM_STATE,
    SYSTEM_TITLE,
    SYSTEM_UPDATED_AT,
)
from .fields import FieldDefinition, enum_of, list_of, simple
from .types import WorkItemType

logger = structlog.get_logger(__name__)

PLANNER_ITEM = "planneritem"

SYSTEM_PLANNER_ITEM = UUID("86af5178-9b41-469b-9096-57e5155c3f31")
SYSTEM_USER_STORY = UUID("6ff83406-caa7-47a9-9200-4ca796be11bb")
SYSTEM_VALUE_PROPOSITION = UUID("3194ab60-855b-4155-9005-9dce4a05f1eb")
SYSTEM_FUNDAMENTAL = UUID("ee7ca005-f81d-4eea-9b9b-1965df0988d0")
SYSTEM_EXPERIENCE = UUID("b9a71831-c803-4f66-8774-4193fffd1311")
SYSTEM_FEATURE = UUID("0a24d3c2-e0a6-4686-8051-ec0ea1915a28")
SYSTEM_BUG = UUID("26787039-b68f-4e28-8814-c2f93be1ef4e")
SYSTEM_TASK = UUID("bbf35418-04b6-426c-a60b-7f80beb0b624")
SYSTEM_SCENARIO = UUID("71171e90-6d35-498f-a6a7-2083b5267c18")

SYSTEM_LINK_TYPE_PARENTING = UUID("25c326a7-6d03-4f5a-b23b-86a9ee4171e9")
SYSTEM_LINK_TYPE_RELATED = UUID("355b647b-adc4-4d2c-b3e6-7a9fae8df62a")


def planner_item_fields() -> Dict[str, FieldDefinition]:
    return {
        SYSTEM_TITLE: FieldDefinition(label="Title", required=True, type=simple("string")),
        SYSTEM_DESCRIPTION: FieldDefinition(label="Description", type=simple("markup")),
        SYSTEM_STATE: FieldDefinition(label="State", required=True, type=enum_of(STATES)),
        SYSTEM_CREATOR: FieldDefinition(label="Creator", required=True, type=simple("user")),
        SYSTEM_ASSIGNEES: FieldDefinition(label="Assignees", type=list_of("user")),
        SYSTEM_ITERATION: FieldDefinition(label="Iteration", type=simple("iteration")),
        SYSTEM_AREA: FieldDefinition(label="Area", type=simple("area")),
        SYSTEM_REMOTE_ITEM_ID: FieldDefinition(label="Remote item", type=simple("string")),
        SYSTEM_CREATED_AT: FieldDefinition(
            label="Created at", read_only=True, type=simple("instant")
        ),
        SYSTEM_UPDATED_AT: FieldDefinition(
            label="Updated at", read_only=True, type=simple("instant")
        ),
        SYSTEM_ORDER: FieldDefinition(label="Execution order", read_only=True, type=simple("float")),
    }


def system_work_item_types() -> List[WorkItemType]:
    """The seeded type hierarchy: ``planneritem`` and its direct subtypes."""
    base = WorkItemType(
        id=SYSTEM_PLANNER_ITEM,
        name=PLANNER_ITEM,
        description="Common fields of all planner item types.",
        fields=planner_item_fields(),
    )
    subtypes = [
        (SYSTEM_USER_STORY, "userstory", "A user story."),
        (SYSTEM_VALUE_PROPOSITION, "valueproposition", "A value proposition."),
        (SYSTEM_FUNDAMENTAL, "fundamental", "A fundamental."),
        (SYSTEM_EXPERIENCE, "experience", "An experience."),
        (SYSTEM_FEATURE, "feature", "A feature."),
        (SYSTEM_BUG, "bug", "A defect."),
        (SYSTEM_TASK, "task", "A task."),
        (SYSTEM_SCENARIO, "scenario", "A scenario."),
    ]
    result = [base]
    for type_id, name, description in subtypes:
        fields = planner_item_fields()
        if type_id == SYSTEM_BUG:
            fields[SYSTEM_CODEBASE] = FieldDefinition(label="Codebase", type=simple("codebase"))
        result.append(
            WorkItemType(
                id=type_id,
                name=name,
                description=description,
                path=PLANNER_ITEM,
                fields=fields,
            )
        )
    return result


def system_link_types() -> List[WorkItemLinkTypeModel]:
    return [
        WorkItemLinkTypeModel(
            id=SYSTEM_LINK_TYPE_PARENTING,
            name="parenting",
            forward_name=PARENT_OF,
            reverse_name=CHILD_OF,
            topology="tree",
        ),
        WorkItemLinkTypeModel(
            id=SYSTEM_LINK_TYPE_RELATED,
            name="related",
            forward_name="relates to",
            reverse_name="is related to",
            topology="network",
        ),
    ]


def seed_system_types(db: Session) -> None:
    """Insert or refresh the system work item types and link types.

    Safe to call repeatedly; the caller commits.
    """
    for wit in system_work_item_types():
        row = db.get(WorkItemTypeModel, wit.id)
        desired = wit.to_model()
        if row is None:
            db.add(desired)
            logger.info("Seeded work item type", wit_name=wit.name, wit_id=str(wit.id))
            continue
        if row.fields != desired.fields or row.path != desired.path:
            row.fields = desired.fields
            row.path = desired.path
            row.version = (row.version or 0) + 1
            logger.info("Refreshed work item type", wit_name=wit.name, version=row.version)

    for link_type in system_link_types():
        if db.get(WorkItemLinkTypeModel, link_type.id) is None:
            db.add(link_type)
            logger.info("Seeded link type", link_type=link_type.name)
    db.flush()
