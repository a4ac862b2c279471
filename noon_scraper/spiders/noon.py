from urllib.parse import urljoin

import scrapy
from scrapy import signals
from twisted.internet.threads import deferToThread
from w3lib.url import add_or_replace_parameter

from noon_scraper.coordination import (
    CompletionCoordinator,
    ItemChannel,
    VisitGroup,
    VisitOutcome,
)
from noon_scraper.items import ProductPageItem
from noon_scraper.middlewares import CRAWL_GRAPH_KEY, RETRY_COUNT_KEY
from noon_scraper.pipelines import CsvFileSink, build_product_stream

VISIT_KEY = "visit"


def _text(selector, css):
    """All text under the elements matching ``css``, joined and stripped."""
    return "".join(selector.css(css + " ::text").getall()).strip()


class NoonSpider(scrapy.Spider):
    """Walks the listing pages in order and visits every product found on them.

    Product pages are fetched concurrently while the walk goes on. Their field
    bags are sent onto ``self.channel``, which feeds the product stream
    (filter, typing, CSV). The channel is closed once the walk is over and the
    last product visit has finished.
    """

    name = "noon"

    def __init__(self, pages=None, category=None, output=None, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.pages = int(pages) if pages else None
        self.category = category
        self.output = output
        self.seen_urls = set()

    @classmethod
    def from_crawler(cls, crawler, *args, **kwargs):
        spider = super().from_crawler(crawler, *args, **kwargs)
        # opening the output file here makes a bad path abort the crawl
        spider.prepare(crawler.settings)
        crawler.signals.connect(spider.request_dropped, signal=signals.request_dropped)
        return spider

    def prepare(self, settings, sink=None):
        self.root = settings.get("SITE_ROOT")
        self.listing_url = urljoin(self.root, self.category or settings.get("LISTING_PATH"))
        if self.pages is None:
            self.pages = settings.getint("LISTING_PAGES", 5)

        self.visits = VisitGroup()
        self.channel = ItemChannel()
        self.coordinator = CompletionCoordinator(self.visits, self.channel)
        if sink is None:
            sink = CsvFileSink(self.output or settings.get("OUTPUT_CSV"))
        self.sink = sink
        self.stream = build_product_stream(self.channel, settings, sink=sink)

    def start_requests(self):
        yield self.listing_request(1)

    async def start(self):
        for request in self.start_requests():
            yield request

    # -------------- Listing ----------------

    def listing_request(self, page):
        return scrapy.Request(
            add_or_replace_parameter(self.listing_url, "page", str(page)),
            callback=self.parse,
            errback=self.listing_failed,
            meta={"page": page, CRAWL_GRAPH_KEY: "listing", RETRY_COUNT_KEY: 0},
            dont_filter=True,
        )

    def parse(self, response):
        page = response.meta["page"]
        found = 0
        try:
            for href in response.css(".productContainer").xpath("(.//a/@href)[1]").getall():
                url = urljoin(self.root, href)
                if url in self.seen_urls:
                    continue
                self.seen_urls.add(url)
                found += 1
                yield self.product_request(url)
        except Exception:
            # a broken page must not stop the walk
            self.logger.exception("Failed to parse product list page %d (%s)", page, response.url)
        else:
            self.logger.info("Listing page %d: dispatched %d product pages", page, found)
        yield from self._next_listing(page)

    def listing_failed(self, failure):
        page = failure.request.meta["page"]
        self.logger.error("Failed to visit product list page %d: %s", page, failure.value)
        yield from self._next_listing(page)

    def _next_listing(self, page):
        if page < self.pages:
            yield self.listing_request(page + 1)
        else:
            self.logger.info("Listing walk finished, %d product visits pending", self.visits.pending)
            self.coordinator.list_walk_finished()

    # -------------- Products ----------------

    def product_request(self, url):
        # counted before the request leaves the spider
        ticket = self.visits.dispatch(url)
        return scrapy.Request(
            url,
            callback=self.parse_product,
            errback=self.product_failed,
            meta={VISIT_KEY: ticket, CRAWL_GRAPH_KEY: "product", RETRY_COUNT_KEY: 0},
            dont_filter=True,
        )

    def parse_product(self, response):
        with response.meta[VISIT_KEY] as visit:
            item = self.extract_product_page(response)
            if item is None:
                self.logger.warning("No product content on %s", response.url)
                return
            self.channel.send(item)
            visit.release(VisitOutcome.EMITTED)

    def extract_product_page(self, response):
        root = response.css("div#__next")
        if not root:
            return None
        root = root[0]
        return ProductPageItem(
            title=_text(root, "h1"),
            categories=_text(root, 'div[data-qa="breadcrumbs-list"]'),
            selling_price=_text(root, ".priceNow"),
            price_before_discount=_text(root, ".priceWas"),
            product_url=response.url,
            brand=_text(root, 'div[data-qa^="pdp-brand-"]'),
            model_number=_text(root, ".modelNumber"),
            rating=_text(root, ".isPdp"),
            is_best_seller=bool(_text(root, ".bestSellerLink")),
        )

    def product_failed(self, failure):
        request = failure.request
        self.logger.error("Failed to visit product page %s: %s", request.url, failure.value)
        request.meta[VISIT_KEY].release(VisitOutcome.FAILED)

    def request_dropped(self, request, spider):
        visit = request.meta.get(VISIT_KEY)
        if spider is self and visit is not None:
            self.logger.warning("Product request dropped: %s", request.url)
            visit.release(VisitOutcome.DROPPED)

    # -------------- Shutdown ----------------

    def closed(self, reason):
        if not self.coordinator.list_walk_done and self.visits.pending == 0:
            # the engine has stopped, nothing can be dispatched any more
            self.logger.warning("Spider closed (%s) before the listing walk finished", reason)
            self.coordinator.list_walk_finished()
        if not self.coordinator.done:
            self.logger.warning(
                "Spider closed (%s) with %d product visits in flight, output left incomplete",
                reason, self.visits.pending,
            )
            return None
        self.coordinator.close()
        return deferToThread(self.finish_stream)

    def finish_stream(self):
        self.stream.join()
        self.logger.info(
            "Wrote %d products to %s (visits: %s)",
            self.sink.rows,
            self.sink.path,
            ", ".join("%s=%d" % (o.value, n) for o, n in self.visits.outcomes.items()),
        )
