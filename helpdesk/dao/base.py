"""
Base Data Access Object (DAO) class.

WHY: The DAO pattern separates database operations from business logic,
making the services testable against a real session without knowing
query details.
"""

from typing import Generic, TypeVar, Type, Optional, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.core.exceptions import NotFoundError
from helpdesk.models.base import Base

# Type variable for model class
ModelType = TypeVar("ModelType", bound=Base)


class BaseDAO(Generic[ModelType]):
    """
    Base Data Access Object providing CRUD operations for all models.

    DAOs flush so generated ids are available, but never commit: the
    session owner decides the transaction boundary.

    Type Parameters:
        ModelType: The SQLAlchemy model class this DAO manages
    """

    not_found_error: Type[NotFoundError] = NotFoundError

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize DAO with model class and database session.

        Args:
            model: The SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs: Any) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Field values for the new record

        Returns:
            The created model instance with database-generated fields populated

        Raises:
            IntegrityError: If unique constraints are violated
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def get_by_id(self, id: int, for_update: bool = False) -> Optional[ModelType]:
        """
        Retrieve a single record by primary key.

        Args:
            id: Primary key value
            for_update: Lock the row until the transaction ends and reload
                it even if it is already in the session

        Returns:
            The model instance if found, None otherwise
        """
        query = select(self.model).where(self.model.id == id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_raise(self, id: int, for_update: bool = False) -> ModelType:
        """
        Retrieve a record by primary key or raise the DAO's not-found error.

        Raises:
            NotFoundError: (or the DAO's subclass) if no row has this id
        """
        instance = await self.get_by_id(id, for_update=for_update)
        if instance is None:
            raise self.not_found_error(
                f"{self.model.__name__} {id} not found",
                resource=self.model.__name__,
                id=id,
            )
        return instance

    async def get_by_field(self, field_name: str, value: Any) -> Optional[ModelType]:
        """
        Retrieve a single record by any field.

        Raises:
            AttributeError: If field_name doesn't exist on the model
        """
        if not hasattr(self.model, field_name):
            raise AttributeError(f"{self.model.__name__} has no field '{field_name}'")

        result = await self.session.execute(
            select(self.model).where(getattr(self.model, field_name) == value).limit(1)
        )
        return result.scalar_one_or_none()
