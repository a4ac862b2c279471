import asyncio
import logging
import random
from fnmatch import fnmatch
from urllib.parse import urlparse

from scrapy.exceptions import IgnoreRequest, NotConfigured

logger = logging.getLogger(__name__)

RETRY_COUNT_KEY = "retry_count"
CRAWL_GRAPH_KEY = "crawl_graph"


def politeness_slot(name, graph):
    return "%s:%s" % (name, graph)


class PolitenessMiddleware:
    """Delay and slot assignment for hosts matching a glob such as ``*noon.*``.

    Every matching request waits ``delay`` seconds plus a random jitter of up to
    ``random_delay`` seconds, then goes through the download slot of its crawl
    graph (``request.meta["crawl_graph"]``). The slot concurrency itself is set
    through DOWNLOAD_SLOTS in settings.
    """

    def __init__(self, domain_glob, slot_name, delay=1.0, random_delay=0.0):
        self.domain_glob = domain_glob
        self.slot_name = slot_name
        self.delay = delay
        self.random_delay = random_delay

    @classmethod
    def from_crawler(cls, crawler):
        settings = crawler.settings
        domain_glob = settings.get("POLITENESS_DOMAIN_GLOB")
        if not domain_glob:
            raise NotConfigured("POLITENESS_DOMAIN_GLOB is not set")
        return cls(
            domain_glob,
            settings.get("POLITENESS_SLOT", "polite"),
            delay=settings.getfloat("POLITENESS_DELAY", 1.0),
            random_delay=settings.getfloat("POLITENESS_RANDOM_DELAY", 0.0),
        )

    def matches(self, url):
        return fnmatch(urlparse(url).hostname or "", self.domain_glob)

    def wait_time(self):
        return self.delay + random.uniform(0, self.random_delay)

    async def process_request(self, request, spider):
        if not self.matches(request.url):
            return None
        graph = request.meta.get(CRAWL_GRAPH_KEY, "default")
        request.meta["download_slot"] = politeness_slot(self.slot_name, graph)
        wait = self.wait_time()
        if wait > 0:
            await asyncio.sleep(wait)
        return None


class BackoffRetryMiddleware:
    """Retries failed fetches a bounded number of times with a fixed pause.

    The attempt count lives in ``request.meta["retry_count"]``. Below
    ``max_retries`` the count is bumped, the middleware sleeps ``backoff``
    seconds and re-issues the request. At the limit the failure is logged and
    the request is abandoned: exceptions fall through to the errback, error
    responses go on to HttpErrorMiddleware.
    """

    def __init__(self, max_retries=3, backoff=5.0, retry_http_codes=(), stats=None):
        self.max_retries = max_retries
        self.backoff = backoff
        self.retry_http_codes = set(retry_http_codes)
        self.stats = stats

    @classmethod
    def from_crawler(cls, crawler):
        settings = crawler.settings
        if not settings.getbool("RETRY_ENABLED"):
            raise NotConfigured
        return cls(
            max_retries=settings.getint("RETRY_TIMES", 3),
            backoff=settings.getfloat("RETRY_BACKOFF", 5.0),
            retry_http_codes=(int(c) for c in settings.getlist("RETRY_HTTP_CODES")),
            stats=crawler.stats,
        )

    async def process_response(self, request, response, spider):
        if request.meta.get("dont_retry") or response.status not in self.retry_http_codes:
            return response
        retry = await self._retry(request, "HTTP %d" % response.status)
        return retry or response

    async def process_exception(self, request, exception, spider):
        if request.meta.get("dont_retry") or isinstance(exception, IgnoreRequest):
            return None
        return await self._retry(request, exception)

    async def _retry(self, request, reason):
        attempts = request.meta.get(RETRY_COUNT_KEY, 0)
        if attempts >= self.max_retries:
            logger.error("Failed to visit %s after %d retries: %s", request.url, attempts, reason)
            self._inc_stat("retry/max_reached")
            return None
        logger.info("Retry %d for %s (%s)", attempts + 1, request.url, reason)
        self._inc_stat("retry/count")
        if self.backoff > 0:
            await asyncio.sleep(self.backoff)
        retry = request.replace(dont_filter=True)
        retry.meta[RETRY_COUNT_KEY] = attempts + 1
        return retry

    def _inc_stat(self, key):
        if self.stats is not None:
            self.stats.inc_value(key)
