"""Grading scale management service."""

import logging

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from results_api.core.exceptions import ConflictError, NotFoundError
from results_api.models.grading import GradingScale
from results_api.models.result import ResultBatch
from results_api.schemas.grading import GradingScaleCreate, GradingScaleResponse, GradingScaleUpdate

logger = logging.getLogger(__name__)


class GradingScaleService:
    """Grading scale management service."""

    def __init__(self, db: Session):
        self.db = db

    def to_response(self, scale: GradingScale) -> GradingScaleResponse:
        return GradingScaleResponse(
            id=scale.id,
            name=scale.name,
            grade_config=scale.bands,
            is_default=scale.is_default,
            created_by=scale.created_by,
            creator_username=scale.creator.username if scale.creator else None,
            created_at=scale.created_at,
            updated_at=scale.updated_at,
        )

    def get_scale(self, scale_id: int) -> GradingScale:
        scale = self.db.get(GradingScale, scale_id)
        if not scale:
            raise NotFoundError("Grading scale", str(scale_id))
        return scale

    def list_scales(
        self,
        search: str | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[list[GradingScale], int]:
        """List scales with the default first, then by name."""
        query = select(GradingScale)
        if search:
            query = query.where(GradingScale.name.ilike(f"%{search}%"))

        total = self.db.scalar(select(func.count()).select_from(query.subquery())) or 0
        query = (
            query
            .order_by(GradingScale.is_default.desc(), GradingScale.name)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(self.db.execute(query).scalars().all()), total

    def _clear_default(self, exclude_id: int | None = None) -> None:
        stmt = update(GradingScale).where(GradingScale.is_default.is_(True))
        if exclude_id is not None:
            stmt = stmt.where(GradingScale.id != exclude_id)
        self.db.execute(stmt.values(is_default=False).execution_options(synchronize_session="fetch"))

    def create_scale(self, data: GradingScaleCreate, user_id: int) -> GradingScale:
        if data.is_default:
            self._clear_default()

        scale = GradingScale(
            name=data.name,
            grade_config=[band.to_config() for band in data.grade_config],
            is_default=data.is_default,
            created_by=user_id,
        )
        self.db.add(scale)
        self.db.flush()
        logger.info(f"Grading scale {scale.id} ({scale.name}) created by user {user_id}")
        return scale

    def update_scale(self, scale_id: int, data: GradingScaleUpdate) -> GradingScale:
        scale = self.get_scale(scale_id)
        if data.is_default:
            self._clear_default(exclude_id=scale_id)

        scale.name = data.name
        scale.grade_config = [band.to_config() for band in data.grade_config]
        scale.is_default = data.is_default
        self.db.flush()
        logger.info(f"Grading scale {scale_id} updated")
        return scale

    def toggle_default(self, scale_id: int) -> GradingScale:
        """Make a scale the only default, or unset it if it already is."""
        scale = self.get_scale(scale_id)
        if not scale.is_default:
            self._clear_default(exclude_id=scale_id)
        scale.is_default = not scale.is_default
        self.db.flush()
        logger.info(f"Grading scale {scale_id} is_default={scale.is_default}")
        return scale

    def delete_scale(self, scale_id: int) -> None:
        scale = self.get_scale(scale_id)

        batch_count = self.db.scalar(
            select(func.count())
            .select_from(ResultBatch)
            .where(ResultBatch.grading_scale_id == scale_id)
        )
        if batch_count:
            raise ConflictError(
                "Cannot delete grading scale that is being used by result batches",
                details={"batch_count": batch_count},
            )

        self.db.delete(scale)
        self.db.flush()
        logger.info(f"Grading scale {scale_id} deleted")
