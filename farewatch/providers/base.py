from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, Iterator, List, Sequence, Tuple, TypeVar

from ..models import FlightOffer, SearchRequest

logger = logging.getLogger(__name__)

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Tuple[T, ...]]:
    """Split *items* into tuples of at most *size* elements."""
    for i in range(0, len(items), size):
        yield tuple(items[i : i + size])


def is_valid_offer(offer: FlightOffer) -> bool:
    return (
        offer.price_eur >= Decimal("0")
        and offer.outbound_date < offer.return_date
        and bool(offer.departure_airport)
        and bool(offer.destination_airport)
    )


class FlightProvider(ABC):
    """One flight-data source.

    Subclasses implement :meth:`_search`; callers use :meth:`search`, which
    never raises: any error inside the adapter is logged and turned into an
    empty result so that one provider cannot abort a tracker check.
    """

    name: str = ""

    def search(self, request: SearchRequest) -> List[FlightOffer]:
        try:
            offers = list(self._search(request))
        except Exception as exc:
            logger.warning("Provider %s failed: %s", self.name, exc, exc_info=True)
            return []

        valid = [off for off in offers if is_valid_offer(off)]
        if len(valid) != len(offers):
            logger.info(
                "Provider %s: dropped %d malformed offers",
                self.name,
                len(offers) - len(valid),
            )
        logger.info("Provider %s returned %d offers", self.name, len(valid))
        return valid

    @abstractmethod
    def _search(self, request: SearchRequest) -> Iterable[FlightOffer]:
        """Query the provider; may raise."""


__all__ = ["FlightProvider", "chunked", "is_valid_offer"]
