"""
Offer 仓储接口
"""
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

from .entity import Offer, OfferStatus


class OfferRepository(ABC):

    @abstractmethod
    async def get_by_id(self, offer_id: int) -> Optional[Offer]:
        pass

    @abstractmethod
    async def get_many(self, offer_ids: Iterable[int]) -> Dict[int, Offer]:
        """批量获取，返回 id -> Offer 映射（缺失的 id 不出现在结果中）"""
        pass

    @abstractmethod
    async def update(self, offer: Offer) -> Offer:
        pass

    @abstractmethod
    async def count_by_rider(self, rider_id: int, statuses: Optional[Iterable[OfferStatus]] = None) -> int:
        pass
