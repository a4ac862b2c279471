import itertools
import logging
import threading
from decimal import Decimal

from itemadapter import ItemAdapter
from scrapy.exceptions import DropItem

from noon_scraper.exceptions import ExtractionError
from noon_scraper.extractors import (
    extract_category,
    extract_model_number,
    extract_price,
    parse_rating,
    parse_rating_count,
)
from noon_scraper.items import Product
from noon_scraper.stream import Flow

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    ("Category", "category"),
    ("Website", "website"),
    ("Title", "title"),
    ("SellingPrice", "selling_price"),
    ("PriceBeforeDiscount", "price_before_discount"),
    ("Currency", "currency"),
    ("ProductURL", "product_url"),
    ("Brand", "brand"),
    ("RatingScore", "rating_score"),
    ("RatingCount", "rating_count"),
    ("Rank", "rank"),
)
CSV_HEADER = ",".join(title for title, _ in CSV_COLUMNS) + "\n"


class NotabilityFilter:
    """Keeps best sellers and products with more than ``min_rating_count`` reviews."""

    def __init__(self, min_rating_count=100):
        self.min_rating_count = min_rating_count

    def process_item(self, item):
        adapter = ItemAdapter(item)
        if adapter.get("is_best_seller"):
            return item
        count = parse_rating_count(adapter.get("rating"))
        if count is not None and count > self.min_rating_count:
            return item
        raise DropItem("not notable")


class RankCounter:

    def __init__(self, start=1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self):
        with self._lock:
            return next(self._counter)


class ProductTyping:
    """Turns a raw product page item into a :class:`Product`.

    Prices or model numbers that cannot be found are logged and left empty, the
    product is still emitted. Ranks are handed out in the order products leave
    this stage.
    """

    def __init__(self, website, currency, rank_counter=None):
        self.website = website
        self.currency = currency
        self.ranks = rank_counter or RankCounter()

    def process_item(self, item):
        adapter = ItemAdapter(item)
        url = adapter.get("product_url") or ""
        logger.info("Processing product %s", url)

        try:
            selling_price = extract_price(adapter.get("selling_price"), self.currency)
        except ExtractionError as e:
            logger.warning("Failed to extract selling price of %s: %s", url, e)
            selling_price = Decimal("0")

        price_before_discount = None
        if adapter.get("price_before_discount"):
            try:
                price_before_discount = extract_price(adapter["price_before_discount"], self.currency)
            except ExtractionError as e:
                logger.warning("Failed to extract price before discount of %s: %s", url, e)

        rating_score = rating_count = None
        if adapter.get("rating"):
            rating_score, rating_count = parse_rating(adapter["rating"])

        sku = None
        if adapter.get("model_number"):
            try:
                sku = extract_model_number(adapter["model_number"])
            except ExtractionError as e:
                logger.warning("Failed to extract model number of %s: %s", url, e)

        return Product(
            category=extract_category(adapter.get("categories")),
            website=self.website,
            title=adapter.get("title") or "",
            selling_price=selling_price,
            price_before_discount=price_before_discount,
            currency=self.currency,
            product_url=url,
            sku=sku,
            brand=adapter.get("brand") or "",
            rating_score=rating_score,
            rating_count=rating_count,
            is_best_seller=bool(adapter.get("is_best_seller")),
            rank=self.ranks.next(),
        )


def _format_value(value):
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return format(value, ".2f")
    return str(value)


class CsvRowSerializer:
    """Renders a product as one CSV line in CSV_COLUMNS order.

    Values are not quoted, commas are removed from titles instead.
    """

    def process_item(self, product):
        adapter = ItemAdapter(product)
        values = []
        for _, field in CSV_COLUMNS:
            value = _format_value(adapter.get(field))
            if field == "title":
                value = value.replace(",", "")
            values.append(value)
        return ",".join(values) + "\n"


class CsvFileSink:
    """Appends rows to ``path``. The header is written once per run, on open."""

    def __init__(self, path, header=CSV_HEADER):
        self.path = path
        self.file = open(path, "a", encoding="utf-8")
        self.rows = 0
        try:
            self.file.write(header)
            self.file.flush()
        except OSError:
            self.file.close()
            raise

    def process_item(self, row):
        self.file.write(row)
        self.rows += 1

    def close(self):
        if not self.file.closed:
            self.file.close()


def build_product_stream(channel, settings, sink=None, rank_counter=None):
    """Wire filter -> typing -> serializer -> sink onto ``channel`` and start it."""
    if sink is None:
        sink = CsvFileSink(settings.get("OUTPUT_CSV", "products.csv"))
    return (
        Flow(channel)
        .via(NotabilityFilter(settings.getint("NOTABLE_MIN_RATING_COUNT", 100)))
        .via(ProductTyping(
            settings.get("SITE_NAME", "noon"),
            settings.get("CURRENCY", "AED"),
            rank_counter=rank_counter,
        ))
        .via(CsvRowSerializer())
        .to(sink)
    )
