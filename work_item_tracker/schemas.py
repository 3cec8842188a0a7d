"""
JSON-API request payloads and response documents.

Request bodies are validated with pydantic; response documents are plain
dictionaries built from the core's models.
"""

import html
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .errors import BadParameterError
from .markup.content import MarkupContent
from .markup.rendering import work_item_href
from .workitem.constants import (
    SYSTEM_AREA,
    SYSTEM_ASSIGNEES,
    SYSTEM_CREATOR,
    SYSTEM_DESCRIPTION,
    SYSTEM_DESCRIPTION_MARKUP,
    SYSTEM_DESCRIPTION_RENDERED,
    SYSTEM_ITERATION,
    SYSTEM_TITLE,
)
from .workitem.fields import CodebaseContent
from .workitem.model import Revision, WorkItem

# relationship name -> (field name, is a list)
WORK_ITEM_RELATIONSHIPS = {
    "assignees": (SYSTEM_ASSIGNEES, True),
    "iteration": (SYSTEM_ITERATION, False),
    "area": (SYSTEM_AREA, False),
}

RELATIONSHIP_TYPES = {
    SYSTEM_ASSIGNEES: "identities",
    SYSTEM_CREATOR: "identities",
    SYSTEM_ITERATION: "iterations",
    SYSTEM_AREA: "areas",
}


# =============================================================================
# Requests
# =============================================================================


class ResourceIdentifier(BaseModel):
    id: str
    type: Optional[str] = None


class Relation(BaseModel):
    data: Union[ResourceIdentifier, List[ResourceIdentifier], None] = None


class WorkItemData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[UUID] = None
    type: str = "workitems"
    attributes: Dict[str, Any] = Field(default_factory=dict)
    relationships: Dict[str, Relation] = Field(default_factory=dict)


class WorkItemSingle(BaseModel):
    """Body of create and update requests."""

    data: WorkItemData


class ReorderItem(BaseModel):
    id: UUID
    type: str = "workitems"
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ReorderPosition(BaseModel):
    direction: str
    id: Optional[UUID] = None


class WorkItemReorder(BaseModel):
    data: List[ReorderItem] = Field(min_length=1)
    position: ReorderPosition


class SpaceAttributes(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    description: Optional[str] = None


class SpaceData(BaseModel):
    type: str = "spaces"
    attributes: SpaceAttributes


class SpaceSingle(BaseModel):
    data: SpaceData


class LinkData(BaseModel):
    type: str = "workitemlinks"
    relationships: Dict[str, Relation]


class LinkSingle(BaseModel):
    data: LinkData


class RenderingAttributes(BaseModel):
    content: str
    markup: str


class RenderingData(BaseModel):
    type: str = "markuprenderings"
    attributes: RenderingAttributes


class RenderingSingle(BaseModel):
    data: RenderingData


def _relation_id(relation: Relation, name: str) -> Optional[str]:
    if relation.data is None:
        return None
    if isinstance(relation.data, list):
        raise BadParameterError(f"data.relationships.{name}", "list", expected="a single resource")
    return relation.data.id


def relation_uuid(relationships: Dict[str, Relation], name: str) -> UUID:
    """The UUID of a required to-one relationship."""
    relation = relationships.get(name)
    value = _relation_id(relation, name) if relation is not None else None
    if value is None:
        raise BadParameterError(f"data.relationships.{name}", None, expected="a resource")
    try:
        return UUID(value)
    except ValueError:
        raise BadParameterError(f"data.relationships.{name}", value, expected="a UUID") from None


def fields_from_payload(data: WorkItemData) -> Dict[str, Any]:
    """Field values named by a request, keyed by field name.

    Names missing from the request are missing from the result, so updates
    leave those fields alone. A relationship sent with ``data: null`` or
    ``data: []`` maps to ``None``/``[]`` and clears the field.
    """
    attributes = dict(data.attributes)
    attributes.pop("version", None)
    attributes.pop(SYSTEM_DESCRIPTION_RENDERED, None)
    markup = attributes.pop(SYSTEM_DESCRIPTION_MARKUP, None)
    if markup is not None and SYSTEM_DESCRIPTION in attributes:
        description = attributes[SYSTEM_DESCRIPTION]
        if isinstance(description, dict):
            description = description.get("content", "")
        attributes[SYSTEM_DESCRIPTION] = {"content": description or "", "markup": markup}

    for relationship, (field_name, is_list) in WORK_ITEM_RELATIONSHIPS.items():
        relation = data.relationships.get(relationship)
        if relation is None:
            continue
        if is_list:
            if relation.data is None:
                attributes[field_name] = []
            elif isinstance(relation.data, list):
                attributes[field_name] = [item.id for item in relation.data]
            else:
                attributes[field_name] = [relation.data.id]
        else:
            attributes[field_name] = _relation_id(relation, relationship)
    return attributes


def payload_version(data: WorkItemData) -> int:
    version = data.attributes.get("version")
    if isinstance(version, bool) or not isinstance(version, int):
        raise BadParameterError("data.attributes.version", version, expected="an integer")
    return version


# =============================================================================
# Responses
# =============================================================================


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, MarkupContent):
        return value.content
    if isinstance(value, CodebaseContent):
        return value.model_dump()
    if isinstance(value, list):
        return [_json_value(item) for item in value]
    return value


def _relation(field_name: str, value: Any) -> Dict[str, Any]:
    resource_type = RELATIONSHIP_TYPES[field_name]
    if isinstance(value, list):
        return {"data": [{"id": str(v), "type": resource_type} for v in value]}
    if value is None:
        return {"data": None}
    return {"data": {"id": str(value), "type": resource_type}}


Renderer = Callable[[UUID, str, str], str]


def work_item_document(
    wi: WorkItem,
    base_url: str,
    render: Optional[Renderer] = None,
    has_children: Optional[bool] = None,
) -> Dict[str, Any]:
    """JSON-API resource object of a work item.

    The title is HTML-escaped. The description is split into its content,
    its markup and, when ``render`` is given, its rendered HTML. When
    ``has_children`` is known it is reported in the children relationship.
    """
    attributes: Dict[str, Any] = {}
    relationships: Dict[str, Any] = {
        "baseType": {"data": {"id": str(wi.type), "type": "workitemtypes"}},
        "space": {"data": {"id": str(wi.space_id), "type": "spaces"}},
    }
    for name, value in wi.fields.items():
        if name in RELATIONSHIP_TYPES:
            key = name.split(".", 1)[1]
            relationships[key] = _relation(name, value)
            continue
        attributes[name] = _json_value(value)
    if has_children is not None:
        relationships["children"] = {
            "links": {"related": work_item_href(base_url, wi.space_id, wi.id) + "/children"},
            "meta": {"hasChildren": has_children},
        }

    title = wi.fields.get(SYSTEM_TITLE)
    if isinstance(title, str):
        attributes[SYSTEM_TITLE] = html.escape(title)

    description = wi.fields.get(SYSTEM_DESCRIPTION)
    if isinstance(description, MarkupContent):
        attributes[SYSTEM_DESCRIPTION] = description.content
        attributes[SYSTEM_DESCRIPTION_MARKUP] = description.markup
        if render is not None:
            attributes[SYSTEM_DESCRIPTION_RENDERED] = render(
                wi.space_id, description.content, description.markup
            )

    attributes["version"] = wi.version
    attributes["system.number"] = wi.number
    return {
        "id": str(wi.id),
        "type": "workitems",
        "attributes": attributes,
        "relationships": relationships,
        "links": {"self": work_item_href(base_url, wi.space_id, wi.id)},
    }


def revision_document(revision: Revision) -> Dict[str, Any]:
    return {
        "id": str(revision.sequence),
        "type": "workitemrevisions",
        "attributes": {
            "kind": revision.kind,
            "at": revision.at.isoformat(),
            "snapshot": revision.snapshot,
        },
        "relationships": {
            "modifier": {"data": {"id": str(revision.actor_id), "type": "identities"}},
            "workItem": {"data": {"id": str(revision.work_item_id), "type": "workitems"}},
        },
    }


def link_document(link: Any) -> Dict[str, Any]:
    return {
        "id": str(link.id),
        "type": "workitemlinks",
        "attributes": {
            "version": link.version,
            "created_at": link.created_at.isoformat() if link.created_at else None,
        },
        "relationships": {
            "source": {"data": {"id": str(link.source_id), "type": "workitems"}},
            "target": {"data": {"id": str(link.target_id), "type": "workitems"}},
            "link_type": {"data": {"id": str(link.link_type_id), "type": "workitemlinktypes"}},
        },
    }
