# ============================================================================
#  availability.py - Multi-Country Availability Resolver
#  Version: 1.0.0
# ============================================================================
import logging
from typing import Callable, Iterator, Sequence, Tuple, Union

from errors import AuthExpiredError, TerminalSupplierError, TransportError
from models import CountryProbe, Exhausted, Found, ProbeOutcome, ProductLookup, SupplierErrorKind
from supplier_client import SupplierClient

logger = logging.getLogger(__name__)

# Ordered by how often the EU warehouses actually serve a listing
DEFAULT_COUNTRIES = ("ES", "FR", "IT", "NL", "PL", "DE", "CZ", "BE", "PT", "AT")


def _no_pause():
    return None


class AvailabilityResolver:
    """Finds the first destination country the supplier will serve a product to.

    Countries are probed strictly in list order and the first OK stops the
    search. `pause` runs before every probe; it is supplied by the caller
    (normally a Pacer from the run controller, which skips its first call)
    so the interval stays configurable and holds across products.
    """

    def __init__(
        self,
        client: SupplierClient,
        countries: Sequence[str] = DEFAULT_COUNTRIES,
        pause: Callable[[], None] = _no_pause,
        currency: str = "EUR",
        language: str = "EN",
    ):
        self.client = client
        self.countries = list(dict.fromkeys(countries))
        self.pause = pause
        self.currency = currency
        self.language = language

    def _probe(self, product_id: str, country: str) -> Tuple[CountryProbe, ProductLookup]:
        lookup = self.client.get_product(product_id, country, self.currency, self.language)
        if lookup.ok:
            product = lookup.product
            probe = CountryProbe(
                product_id=product_id,
                country=country,
                outcome=ProbeOutcome.SUCCESS,
                title=product.title,
                image_count=len(product.image_urls),
                variant_count=len(product.skus),
            )
        else:
            outcome = (
                ProbeOutcome.TRANSPORT_ERROR
                if lookup.error.kind == SupplierErrorKind.TRANSPORT_ERROR
                else ProbeOutcome.SUPPLIER_ERROR
            )
            probe = CountryProbe(
                product_id=product_id,
                country=country,
                outcome=outcome,
                error_code=lookup.error.code,
                message=lookup.error.message,
            )
        logger.debug(f"Probe {product_id}/{country}: {probe.outcome.value} {probe.message or ''}")
        return probe, lookup

    def probes(self, product_id: str) -> Iterator[Tuple[CountryProbe, ProductLookup]]:
        """Lazy sequence of probes; nothing is requested until the consumer asks."""
        for country in self.countries:
            self.pause()
            probe, lookup = self._probe(product_id, country)
            yield probe, lookup

            if not lookup.ok and lookup.error.is_rate_limited:
                logger.warning(f"Rate limit hit on {product_id}/{country}, retrying once")
                self.pause()
                yield self._probe(product_id, country)

    def resolve(self, product_id: str) -> Union[Found, Exhausted]:
        attempts = []
        for probe, lookup in self.probes(product_id):
            # A rate-limit retry overwrites its own country's record
            if attempts and attempts[-1].country == probe.country:
                attempts[-1] = probe
            else:
                attempts.append(probe)
            if lookup.ok:
                logger.info(f"Product {product_id} available via {probe.country} "
                            f"({probe.image_count} images, {probe.variant_count} variants)")
                return Found(
                    product_id=product_id,
                    country=probe.country,
                    title=probe.title or "",
                    image_count=probe.image_count,
                    variant_count=probe.variant_count,
                    raw_payload=lookup.payload or {},
                    attempts=attempts,
                )

            error = lookup.error
            if error.kind == SupplierErrorKind.AUTH_EXPIRED:
                raise AuthExpiredError(error.message)
            if error.is_terminal:
                raise TerminalSupplierError(f"{error.code}: {error.message}")
            if error.kind == SupplierErrorKind.TRANSPORT_ERROR:
                raise TransportError(f"Probe {product_id}/{probe.country} failed: {error.message}")

        logger.info(f"Product {product_id} not available in any of {len(self.countries)} countries")
        return Exhausted(product_id=product_id, attempts=attempts)
# ============================================================================
# End of availability.py - Version: 1.0.0
# ============================================================================
