"""
Offer 仓储实现
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.offer.entity import Offer, OfferStatus
from domain.offer.repository import OfferRepository
from infrastructure.models.offer import OfferModel


class SQLAlchemyOfferRepository(OfferRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OfferModel) -> Offer:
        return Offer(
            id=model.id,
            business_id=model.business_id,
            rider_id=model.rider_id,
            amount=Decimal(str(model.amount)).quantize(Decimal("0.01")),
            currency=model.currency,
            status=OfferStatus(model.status),
            title=model.title,
            pickup_address=model.pickup_address,
            delivery_address=model.delivery_address,
            business_name=model.business_name,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def get_by_id(self, offer_id: int) -> Optional[Offer]:
        result = await self.session.execute(
            select(OfferModel)
            .where(OfferModel.id == offer_id)
            .execution_options(populate_existing=True)
        )
        db_offer = result.scalar_one_or_none()
        return self._to_entity(db_offer) if db_offer else None

    async def get_many(self, offer_ids: Iterable[int]) -> Dict[int, Offer]:
        ids = list(set(offer_ids))
        if not ids:
            return {}
        result = await self.session.execute(select(OfferModel).where(OfferModel.id.in_(ids)))
        return {m.id: self._to_entity(m) for m in result.scalars().all()}

    async def update(self, offer: Offer) -> Offer:
        """只同步状态字段，其余字段由 offer 生命周期维护"""
        await self.session.execute(
            update(OfferModel)
            .where(OfferModel.id == offer.id)
            .values(
                status=offer.status.value,
                updated_at=offer.updated_at or datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return offer

    async def count_by_rider(self, rider_id: int, statuses: Optional[Iterable[OfferStatus]] = None) -> int:
        query = select(func.count()).select_from(OfferModel).where(OfferModel.rider_id == rider_id)
        if statuses:
            query = query.where(OfferModel.status.in_([OfferStatus(s).value for s in statuses]))
        result = await self.session.execute(query)
        return int(result.scalar_one())
