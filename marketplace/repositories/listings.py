"""Persistence for listings.

Every write is filtered by both the listing id and the seller id, so a
caller that skipped the ownership check still cannot touch another
seller's row.
"""

import logging
from typing import Any, NoReturn

from sqlalchemy import delete, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, contains_eager

from marketplace.exceptions import DependencyError
from marketplace.models.listing import Listing
from marketplace.models.user import User
from marketplace.schemas.listing import ListingFilter

logger = logging.getLogger(__name__)


class ListingRepository:
    """CRUD for the products table."""

    def __init__(self, db: Session):
        self.db = db

    def _query(self):
        return (
            self.db.query(Listing)
            .join(User, Listing.seller_id == User.id)
            .options(contains_eager(Listing.seller))
        )

    def find(self, filters: ListingFilter | None = None) -> list[Listing]:
        query = self._query()
        if filters:
            if filters.category:
                query = query.filter(Listing.category == filters.category)
            if filters.seller_id is not None:
                query = query.filter(Listing.seller_id == filters.seller_id)
            if filters.sold is not None:
                query = query.filter(Listing.sold.is_(filters.sold))
            if filters.search:
                pattern = f"%{filters.search.strip()}%"
                query = query.filter(
                    or_(Listing.title.ilike(pattern), Listing.description.ilike(pattern))
                )
        return query.order_by(Listing.created_at.desc(), Listing.id.desc()).all()

    def get(self, listing_id: int) -> Listing | None:
        return self._query().filter(Listing.id == listing_id).first()

    def get_owned(self, listing_id: int, seller_id: int) -> Listing | None:
        return (
            self._query()
            .filter(Listing.id == listing_id, Listing.seller_id == seller_id)
            .first()
        )

    def add(self, listing: Listing) -> Listing:
        try:
            self.db.add(listing)
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail(e)
        self.db.refresh(listing)
        return listing

    def update_owned(self, listing_id: int, seller_id: int, values: dict[str, Any]) -> bool:
        """Apply ``values`` to the seller's listing. Returns False if no row matched."""
        result = self._execute(
            update(Listing)
            .where(Listing.id == listing_id, Listing.seller_id == seller_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount > 0

    def delete_owned(self, listing_id: int, seller_id: int) -> bool:
        result = self._execute(
            delete(Listing)
            .where(Listing.id == listing_id, Listing.seller_id == seller_id)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount > 0

    def _execute(self, statement):
        try:
            result = self.db.execute(statement)
            self.db.commit()
        except SQLAlchemyError as e:
            self._fail(e)
        return result

    def _fail(self, error: SQLAlchemyError) -> NoReturn:
        self.db.rollback()
        logger.error(f"Listing write failed: {error}")
        raise DependencyError("Database write failed") from error
