"""Uploaded dataset images: expiry handling and cleanup."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session

from dataset_ingest.db.schema import DatasetImage, utcnow


def register_image(
    session: Session,
    *,
    team_id: str,
    path: str,
    expire_hours: int,
    dataset_id: str | None = None,
    related_id: str | None = None,
) -> str:
    """Record a freshly uploaded image that expires unless a collection claims it."""
    image = DatasetImage(
        team_id=team_id,
        dataset_id=dataset_id,
        related_id=related_id,
        path=path,
        expired_at=utcnow() + timedelta(hours=expire_hours),
    )
    session.add(image)
    session.flush()
    return image.id


def remove_image_expiry(
    session: Session,
    *,
    team_id: str,
    collection_id: str,
    image_ids: Sequence[str] | None = None,
    related_id: str | None = None,
) -> int:
    """Attach *team_id*'s images to *collection_id* and clear their expiry. Returns rows touched."""
    conditions = []
    if image_ids:
        conditions.append(DatasetImage.id.in_(list(image_ids)))
    if related_id:
        conditions.append(DatasetImage.related_id == related_id)
    if not conditions:
        return 0
    result = session.execute(
        update(DatasetImage)
        .where(DatasetImage.team_id == team_id, or_(*conditions))
        .values(expired_at=None, collection_id=collection_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _collection_scope(team_id: str, collection_ids: Sequence[str], related_ids: Sequence[str]):
    condition = DatasetImage.collection_id.in_(list(collection_ids))
    if related_ids:
        condition = or_(condition, DatasetImage.related_id.in_(list(related_ids)))
    return DatasetImage.team_id == team_id, condition


def collection_image_paths(
    session: Session,
    *,
    team_id: str,
    collection_ids: Sequence[str],
    related_ids: Sequence[str] = (),
) -> list[str]:
    """Stored paths of the images owned by the collections."""
    scope = _collection_scope(team_id, collection_ids, related_ids)
    return [p for p in session.scalars(select(DatasetImage.path).where(*scope)) if p]


def delete_collection_images(
    session: Session,
    *,
    team_id: str,
    collection_ids: Sequence[str],
    related_ids: Sequence[str] = (),
) -> int:
    """Delete image rows owned by the collections; the files are left to the caller."""
    scope = _collection_scope(team_id, collection_ids, related_ids)
    result = session.execute(delete(DatasetImage).where(*scope).execution_options(synchronize_session=False))
    return result.rowcount or 0


def purge_expired_images(session: Session) -> list[str]:
    """Delete unclaimed images past their expiry; returns their stored paths."""
    scope = (DatasetImage.expired_at.is_not(None), DatasetImage.expired_at <= utcnow())
    paths = [p for p in session.scalars(select(DatasetImage.path).where(*scope)) if p]
    session.execute(delete(DatasetImage).where(*scope).execution_options(synchronize_session=False))
    return paths
