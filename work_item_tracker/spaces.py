"""
Collaborators consumed by the work item core: identities, spaces, areas and
iterations.

Only the small surface the core needs is implemented here.
"""

import uuid
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy.orm import Session

from .db.models import AreaModel, IdentityModel, IterationModel, SpaceModel
from .errors import NotFoundError

logger = structlog.get_logger(__name__)


class IdentityRepository:
    """Known user identities."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        username: str,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
        identity_id: Optional[UUID] = None,
    ) -> IdentityModel:
        identity = IdentityModel(
            id=identity_id or uuid.uuid4(),
            username=username,
            full_name=full_name,
            email=email,
        )
        self.db.add(identity)
        self.db.flush()
        logger.info("Identity created", identity_id=str(identity.id), username=username)
        return identity

    def load(self, identity_id: UUID) -> IdentityModel:
        identity = self.db.get(IdentityModel, identity_id)
        if identity is None:
            raise NotFoundError("identity", identity_id)
        return identity

    def exists(self, identity_id: UUID) -> bool:
        return self.db.get(IdentityModel, identity_id) is not None

    def list_by_ids(self, identity_ids: List[UUID]) -> List[IdentityModel]:
        if not identity_ids:
            return []
        return (
            self.db.query(IdentityModel)
            .filter(IdentityModel.id.in_(identity_ids))
            .all()
        )


class SpaceRepository:
    """Spaces, created together with their root area and root iteration."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        name: str,
        owner_id: UUID,
        description: Optional[str] = None,
        space_id: Optional[UUID] = None,
    ) -> SpaceModel:
        space = SpaceModel(
            id=space_id or uuid.uuid4(),
            name=name,
            description=description,
            owner_id=owner_id,
        )
        self.db.add(space)
        self.db.flush()
        self.db.add(AreaModel(id=uuid.uuid4(), space_id=space.id, name=name, path=""))
        self.db.add(IterationModel(id=uuid.uuid4(), space_id=space.id, name=name, path=""))
        self.db.flush()
        logger.info("Space created", space_id=str(space.id), space_name=name)
        return space

    def load(self, space_id: UUID) -> SpaceModel:
        space = self.db.get(SpaceModel, space_id)
        if space is None:
            raise NotFoundError("space", space_id)
        return space

    def exists(self, space_id: UUID) -> bool:
        return self.db.get(SpaceModel, space_id) is not None


class AreaRepository:
    def __init__(self, db: Session):
        self.db = db

    def load(self, area_id: UUID) -> AreaModel:
        area = self.db.get(AreaModel, area_id)
        if area is None:
            raise NotFoundError("area", area_id)
        return area

    def root(self, space_id: UUID) -> AreaModel:
        """The root area of a space."""
        area = (
            self.db.query(AreaModel)
            .filter(AreaModel.space_id == space_id, AreaModel.path == "")
            .first()
        )
        if area is None:
            raise NotFoundError("root area of space", space_id)
        return area

    def create_child(self, parent: AreaModel, name: str) -> AreaModel:
        path = f"{parent.path}/{parent.id}" if parent.path else str(parent.id)
        area = AreaModel(id=uuid.uuid4(), space_id=parent.space_id, name=name, path=path)
        self.db.add(area)
        self.db.flush()
        return area


class IterationRepository:
    def __init__(self, db: Session):
        self.db = db

    def load(self, iteration_id: UUID) -> IterationModel:
        iteration = self.db.get(IterationModel, iteration_id)
        if iteration is None:
            raise NotFoundError("iteration", iteration_id)
        return iteration

    def root(self, space_id: UUID) -> IterationModel:
        """The root iteration of a space."""
        iteration = (
            self.db.query(IterationModel)
            .filter(IterationModel.space_id == space_id, IterationModel.path == "")
            .first()
        )
        if iteration is None:
            raise NotFoundError("root iteration of space", space_id)
        return iteration

    def list(self, space_id: UUID) -> List[IterationModel]:
        return (
            self.db.query(IterationModel)
            .filter(IterationModel.space_id == space_id)
            .order_by(IterationModel.path, IterationModel.name)
            .all()
        )

    def create_child(self, parent: IterationModel, name: str) -> IterationModel:
        path = f"{parent.path}/{parent.id}" if parent.path else str(parent.id)
        iteration = IterationModel(
            id=uuid.uuid4(), space_id=parent.space_id, name=name, path=path
        )
        self.db.add(iteration)
        self.db.flush()
        return iteration
