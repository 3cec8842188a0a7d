"""
Work Item Tracker API routes.

JSON-API shaped endpoints over the work item core. All endpoints are
prefixed with /api. The caller identity comes from the ``X-Identity-ID``
header; token verification happens in front of this service.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import conditional
from .config import Settings, get_settings
from .db.base import get_db, transactional
from .errors import BadParameterError, ForbiddenError, NotFoundError, UnauthorizedError
from .markup.rendering import MarkupRenderer
from .schemas import (
    LinkSingle,
    RenderingSingle,
    SpaceSingle,
    WorkItemReorder,
    WorkItemSingle,
    fields_from_payload,
    link_document,
    payload_version,
    relation_uuid,
    revision_document,
    work_item_document,
)
from .spaces import IdentityRepository, SpaceRepository
from .workitem import criteria
from .workitem.constants import (
    SYSTEM_AREA,
    SYSTEM_ASSIGNEES,
    SYSTEM_ITERATION,
    SYSTEM_STATE,
)
from .workitem.model import WorkItem, WorkItemUpdate
from .workitem.ordering import Direction
from .workitem.query import parse_json
from .workitem.repository import WorkItemRepository

router = APIRouter(prefix="/api", tags=["work items"])


# =============================================================================
# Dependencies
# =============================================================================


def get_current_identity(
    x_identity_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> UUID:
    """The authenticated caller."""
    if not x_identity_id:
        raise UnauthorizedError("missing X-Identity-ID header")
    try:
        identity_id = UUID(x_identity_id)
    except ValueError:
        raise UnauthorizedError("malformed X-Identity-ID header") from None
    if not IdentityRepository(db).exists(identity_id):
        raise UnauthorizedError("unknown identity")
    return identity_id


def get_repository(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> WorkItemRepository:
    return WorkItemRepository(db, settings)


def get_renderer(
    repo: WorkItemRepository = Depends(get_repository),
) -> MarkupRenderer:
    return MarkupRenderer(repo.settings, repo.lookup_reference)


def _ensure_space_owner(repo: WorkItemRepository, space_id: UUID, identity_id: UUID) -> None:
    space = repo.spaces.load(space_id)
    if space.owner_id != identity_id:
        raise ForbiddenError("user is not the space owner")


def _ensure_may_edit(repo: WorkItemRepository, wi: WorkItem, identity_id: UUID) -> None:
    space = repo.spaces.load(wi.space_id)
    if space.owner_id == identity_id or wi.creator == str(identity_id):
        return
    raise ForbiddenError("user is neither the space owner nor the work item creator")


def _load_in_space(repo: WorkItemRepository, space_id: UUID, wi_id: UUID) -> WorkItem:
    wi = repo.load_by_id(wi_id)
    if wi.space_id != space_id:
        raise NotFoundError("work item", wi_id)
    return wi


def _document(
    wi: WorkItem, repo: WorkItemRepository, renderer: MarkupRenderer
) -> Dict[str, Any]:
    return work_item_document(
        wi,
        repo.settings.api_base_url,
        renderer.render,
        has_children=repo.links.has_children(wi.id),
    )


def _conditional_response(
    request: Request,
    settings: Settings,
    tag: str,
    last_modified,
    build,
    status_code: int = 200,
) -> Response:
    headers = {
        "ETag": conditional.format_etag(tag),
        "Last-Modified": conditional.format_http_date(last_modified),
        "Cache-Control": settings.cache_control_work_items,
    }
    if conditional.is_not_modified(
        request.headers.get("if-none-match"),
        request.headers.get("if-modified-since"),
        tag,
        last_modified,
    ):
        return Response(status_code=304, headers=headers)
    return JSONResponse(content=build(), status_code=status_code, headers=headers)


def _page_link(request: Request, offset: int, limit: int) -> str:
    params = dict(request.query_params)
    params["page[offset]"] = str(offset)
    params["page[limit]"] = str(limit)
    return str(request.url.replace_query_params(**params))


def _pagination_links(request: Request, offset: int, limit: int, total: int) -> Dict[str, str]:
    last_offset = max(0, ((total - 1) // limit) * limit) if total else 0
    links = {
        "first": _page_link(request, 0, limit),
        "last": _page_link(request, last_offset, limit),
    }
    if offset > 0:
        links["prev"] = _page_link(request, max(0, offset - limit), limit)
    if offset + limit < total:
        links["next"] = _page_link(request, offset + limit, limit)
    return links


# =============================================================================
# Spaces
# =============================================================================


def _space_document(
    document: Dict[str, Any], backlog_size: int, settings: Settings
) -> Dict[str, Any]:
    space_url = f"{settings.api_base_url.rstrip('/')}/api/spaces/{document['id']}"
    return {
        "id": document["id"],
        "type": "spaces",
        "attributes": {
            "name": document["name"],
            "description": document["description"],
        },
        "relationships": {
            "owned-by": {"data": {"id": document["owner_id"], "type": "identities"}},
            "backlog": {
                "links": {"related": f"{space_url}/backlog"},
                "meta": {"totalCount": backlog_size},
            },
        },
    }


@router.post("/spaces", status_code=201)
async def create_space(
    payload: SpaceSingle,
    identity_id: UUID = Depends(get_current_identity),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Create a space together with its root area and root iteration."""
    attributes = payload.data.attributes
    with transactional(db, settings.transaction_timeout_seconds):
        space = SpaceRepository(db).create(
            attributes.name, identity_id, description=attributes.description
        )
        document = space.to_dict()
    return {"data": _space_document(document, 0, settings)}


@router.get("/spaces/{space_id}")
async def show_space(
    space_id: UUID,
    repo: WorkItemRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Get a space, with the size of its backlog."""
    document = repo.spaces.load(space_id).to_dict()
    return {"data": _space_document(document, repo.count_backlog(space_id), repo.settings)}


# =============================================================================
# Work items
# =============================================================================


@router.post("/spaces/{space_id}/work_items", status_code=201)
async def create_work_item(
    space_id: UUID,
    payload: WorkItemSingle,
    response: Response,
    identity_id: UUID = Depends(get_current_identity),
    repo: WorkItemRepository = Depends(get_repository),
    renderer: MarkupRenderer = Depends(get_renderer),
) -> Dict[str, Any]:
    """Create a work item. The type comes from the ``baseType`` relationship."""
    _ensure_space_owner(repo, space_id, identity_id)
    type_id = relation_uuid(payload.data.relationships, "baseType")
    wi = repo.create(space_id, type_id, fields_from_payload(payload.data), identity_id)
    document = _document(wi, repo, renderer)
    response.headers["Location"] = document["links"]["self"]
    return {"data": document}


def _list_expression(
    repo: WorkItemRepository,
    expression: Optional[str],
    assignee: Optional[str],
    iteration: Optional[str],
    area: Optional[str],
    work_item_type: Optional[UUID],
    work_item_state: Optional[str],
) -> Optional[criteria.Expression]:
    conjuncts: List[criteria.Expression] = []
    if expression:
        conjuncts.append(parse_json(expression))
    if assignee:
        conjuncts.append(criteria.equals(SYSTEM_ASSIGNEES, assignee))
    if iteration:
        conjuncts.append(criteria.equals(SYSTEM_ITERATION, iteration))
    if area:
        conjuncts.append(criteria.equals(SYSTEM_AREA, area))
    if work_item_type:
        wit = repo.registry.load(work_item_type)
        subtypes = repo.registry.list_derived(wit.name)
        conjuncts.append(criteria.or_(*(criteria.equals("type", t.id) for t in subtypes)))
    if work_item_state:
        conjuncts.append(criteria.equals(SYSTEM_STATE, work_item_state))
    if not conjuncts:
        return None
    return criteria.and_(*conjuncts)


@router.get("/spaces/{space_id}/work_items")
async def list_work_items(
    space_id: UUID,
    request: Request,
    expression: Optional[str] = Query(None, alias="filter[expression]"),
    parent_exists: Optional[bool] = Query(None, alias="filter[parentexists]"),
    assignee: Optional[str] = Query(None, alias="filter[assignee]"),
    iteration: Optional[str] = Query(None, alias="filter[iteration]"),
    area: Optional[str] = Query(None, alias="filter[area]"),
    work_item_type: Optional[UUID] = Query(None, alias="filter[workitemtype]"),
    work_item_state: Optional[str] = Query(None, alias="filter[workitemstate]"),
    offset: int = Query(0, alias="page[offset]"),
    limit: int = Query(20, alias="page[limit]"),
    repo: WorkItemRepository = Depends(get_repository),
    renderer: MarkupRenderer = Depends(get_renderer),
) -> Response:
    """List work items of a space, highest execution order first."""
    repo.spaces.load(space_id)
    predicate = _list_expression(
        repo, expression, assignee, iteration, area, work_item_type, work_item_state
    )
    items, total = repo.list(space_id, predicate, parent_exists, offset, limit)
    tag, last_modified = conditional.compute_list(items)
    return _conditional_response(
        request,
        repo.settings,
        tag,
        last_modified,
        lambda: {
            "data": [_document(wi, repo, renderer) for wi in items],
            "meta": {"totalCount": total},
            "links": _pagination_links(request, offset, limit, total),
        },
    )


@router.get("/spaces/{space_id}/backlog")
async def list_backlog(
    space_id: UUID,
    request: Request,
    expression: Optional[str] = Query(None, alias="filter[expression]"),
    parent_exists: Optional[bool] = Query(None, alias="filter[parentexists]"),
    assignee: Optional[str] = Query(None, alias="filter[assignee]"),
    area: Optional[str] = Query(None, alias="filter[area]"),
    work_item_type: Optional[UUID] = Query(None, alias="filter[workitemtype]"),
    offset: int = Query(0, alias="page[offset]"),
    limit: int = Query(20, alias="page[limit]"),
    repo: WorkItemRepository = Depends(get_repository),
    renderer: MarkupRenderer = Depends(get_renderer),
) -> Response:
    """Open planner items of the root iteration, highest execution order first."""
    predicate = _list_expression(repo, expression, assignee, None, area, work_item_type, None)
    items, total = repo.list_backlog(space_id, predicate, parent_exists, offset, limit)
    tag, last_modified = conditional.compute_list(items)
    return _conditional_response(
        request,
        repo.settings,
        tag,
        last_modified,
        lambda: {
            "data": [_document(wi, repo, renderer) for wi in items],
            "meta": {"totalCount": total},
            "links": _pagination_links(request, offset, limit, total),
        },
    )


@router.patch("/spaces/{space_id}/work_items/reorder")
async def reorder_work_items(
    space_id: UUID,
    payload: WorkItemReorder,
    identity_id: UUID = Depends(get_current_identity),
    repo: WorkItemRepository = Depends(get_repository),
    renderer: MarkupRenderer = Depends(get_renderer),
) -> Dict[str, Any]:
    """Move work items above/below another one, or to the top/bottom."""
    _ensure_space_owner(repo, space_id, identity_id)
    direction = Direction.parse(payload.position.direction)
    moved = []
    with transactional(repo.db, repo.settings.transaction_timeout_seconds):
        for item in payload.data:
            version = item.attributes.get("version")
            if isinstance(version, bool) or not isinstance(version, int):
                raise BadParameterError("data.attributes.version", version, expected="an integer")
            moved.append(
                repo.reorder(
                    space_id,
                    item.id,
                    version,
                    direction,
                    identity_id,
                    target_id=payload.position.id,
                )
            )
    return {"data": [_document(wi, repo, renderer) for wi in moved]}


@router.get("/spaces/{space_id}/work_items/{wi_id}")
async def show_work_item(
    space_id: UUID,
    wi_id: UUID,
    request: Request,
    repo: WorkItemRepository = Depends(get_repository),
    renderer: MarkupRenderer = Depends(get_renderer),
) -> Response:
    """Get a work item, honouring If-None-Match and If-Modified-Since."""
    wi = _load_in_space(repo, space_id, wi_id)
    tag, last_modified = conditional.compute(wi)
    return _conditional_response(
        request,
        repo.settings,
        tag,
        last_modified,
        lambda: {"data": _document(wi, repo, renderer)},
    )


@router.patch("/spaces/{space_id}/work_items/{wi_id}")
async def update_work_item(
    space_id: UUID,
    wi_id: UUID,
    payload: WorkItemSingle,
    identity_id: UUID = Depends(get_current_identity),
    repo: WorkItemRepository = Depends(get_repository),
    renderer: MarkupRenderer = Depends(get_renderer),
) -> Dict[str, Any]:
    """Update a work item. ``data.attributes.version`` must match the stored one."""
    if payload.data.id is not None and payload.data.id != wi_id:
        raise BadParameterError("data.id", payload.data.id, expected=str(wi_id))
    wi = _load_in_space(repo, space_id, wi_id)
    _ensure_may_edit(repo, wi, identity_id)
    update = WorkItemUpdate(
        number=wi.number,
        version=payload_version(payload.data),
        fields=fields_from_payload(payload.data),
    )
    saved = repo.save(space_id, update, identity_id)
    return {"data": _document(saved, repo, renderer)}


@router.delete("/spaces/{space_id}/work_items/{wi_id}", status_code=204)
async def delete_work_item(
    space_id: UUID,
    wi_id: UUID,
    identity_id: UUID = Depends(get_current_identity),
    repo: WorkItemRepository = Depends(get_repository),
) -> Response:
    """Delete a work item and the links incident to it."""
    _load_in_space(repo, space_id, wi_id)
    _ensure_space_owner(repo, space_id, identity_id)
    repo.delete(wi_id, identity_id)
    return Response(status_code=204)


@router.get("/spaces/{space_id}/work_items/{wi_id}/children")
async def list_work_item_children(
    space_id: UUID,
    wi_id: UUID,
    request: Request,
    offset: int = Query(0, alias="page[offset]"),
    limit: int = Query(20, alias="page[limit]"),
    repo: WorkItemRepository = Depends(get_repository),
    renderer: MarkupRenderer = Depends(get_renderer),
) -> Response:
    """Children of a work item through "parent of" links."""
    _load_in_space(repo, space_id, wi_id)
    items, total = repo.list_children(wi_id, offset, limit)
    tag, last_modified = conditional.compute_list(items)
    return _conditional_response(
        request,
        repo.settings,
        tag,
        last_modified,
        lambda: {
            "data": [_document(wi, repo, renderer) for wi in items],
            "meta": {"totalCount": total},
            "links": _pagination_links(request, offset, limit, total),
        },
    )


@router.get("/spaces/{space_id}/work_items/{wi_id}/revisions")
async def list_work_item_revisions(
    space_id: UUID,
    wi_id: UUID,
    repo: WorkItemRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Revision log of a work item, oldest first. Also served for deleted items."""
    revisions = repo.list_revisions(wi_id)
    if revisions[0].snapshot.get("space_id") != str(space_id):
        raise NotFoundError("work item", wi_id)
    return {"data": [revision_document(r) for r in revisions]}


@router.get("/spaces/{space_id}/work_items/{wi_id}/links")
async def list_work_item_links(
    space_id: UUID,
    wi_id: UUID,
    repo: WorkItemRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Live links with the work item as source or target."""
    _load_in_space(repo, space_id, wi_id)
    links = repo.links.list_incident(wi_id)
    return {"data": [link_document(link) for link in links], "meta": {"totalCount": len(links)}}


# =============================================================================
# Links
# =============================================================================


@router.post("/work_item_links", status_code=201)
async def create_work_item_link(
    payload: LinkSingle,
    identity_id: UUID = Depends(get_current_identity),
    repo: WorkItemRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Link two work items."""
    relationships = payload.data.relationships
    source_id = relation_uuid(relationships, "source")
    target_id = relation_uuid(relationships, "target")
    link_type_id = relation_uuid(relationships, "link_type")
    _ensure_may_edit(repo, repo.load_by_id(source_id), identity_id)
    link = repo.links.create(source_id, target_id, link_type_id, identity_id)
    return {"data": link_document(link)}


@router.delete("/work_item_links/{link_id}", status_code=204)
async def delete_work_item_link(
    link_id: UUID,
    identity_id: UUID = Depends(get_current_identity),
    repo: WorkItemRepository = Depends(get_repository),
) -> Response:
    link = repo.links.load(link_id)
    _ensure_may_edit(repo, repo.load_by_id(link.source_id), identity_id)
    repo.links.delete(link_id, identity_id)
    return Response(status_code=204)


# =============================================================================
# Iterations and rendering
# =============================================================================


@router.get("/spaces/{space_id}/iterations/work_item_counts")
async def get_iteration_counts(
    space_id: UUID,
    repo: WorkItemRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Total and closed work item counts for every iteration of a space."""
    repo.spaces.load(space_id)
    counts = repo.get_counts_per_iteration(space_id)
    return {
        "data": [
            {
                "id": iteration_id,
                "type": "iterations",
                "attributes": {"total": c.total, "closed": c.closed},
            }
            for iteration_id, c in sorted(counts.items())
        ]
    }


@router.post("/spaces/{space_id}/render")
async def render_markup(
    space_id: UUID,
    payload: RenderingSingle,
    repo: WorkItemRepository = Depends(get_repository),
    renderer: MarkupRenderer = Depends(get_renderer),
) -> Dict[str, Any]:
    """Render markup content as it would appear in a work item of the space."""
    repo.spaces.load(space_id)
    attributes = payload.data.attributes
    rendered = renderer.render(space_id, attributes.content, attributes.markup)
    return {
        "data": {
            "type": "markuprenderings",
            "attributes": {"renderedContent": rendered},
        }
    }
