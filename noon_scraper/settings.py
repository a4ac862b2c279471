import os


BOT_NAME = "noon_scraper"

SPIDER_MODULES = ["noon_scraper.spiders"]
NEWSPIDER_MODULE = "noon_scraper.spiders"

# Crawl target
SITE_NAME = "noon"
SITE_ROOT = "https://www.noon.com"
LISTING_PATH = (
    "/uae-en/beauty/personal-care-16343/men-grooming/"
    "?f%5BisCarousel%5D%5B%5D=true&limit=50&sort%5Bby%5D=popularity&sort%5Bdir%5D=desc"
)
LISTING_PAGES = 5
CURRENCY = "AED"

# Products kept when flagged best seller or with more reviews than this
NOTABLE_MIN_RATING_COUNT = 100

# Output file (appended to, header written on every run)
OUTPUT_CSV = os.environ.get("NOON_OUTPUT_CSV", "products.csv")

ROBOTSTXT_OBEY = False

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36"
    " (KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)

# Concurrency and throttling (politeness)
# Hosts matching the glob share one download slot per crawl graph (listing / product),
# each capped at POLITENESS_PARALLELISM concurrent requests.
POLITENESS_DOMAIN_GLOB = "*noon.*"
POLITENESS_SLOT = "noon"
POLITENESS_PARALLELISM = 3
POLITENESS_DELAY = 1.0          # seconds before every request
POLITENESS_RANDOM_DELAY = 15.0  # plus up to this many seconds of jitter

# requests sleeping out their politeness delay count against this, keep it at the sum of the slot caps
CONCURRENT_REQUESTS = 2 * POLITENESS_PARALLELISM
DOWNLOAD_DELAY = 0
DOWNLOAD_SLOTS = {
    "%s:%s" % (POLITENESS_SLOT, graph): {
        "concurrency": POLITENESS_PARALLELISM,
        "delay": 0,
        "randomize_delay": False,
    }
    for graph in ("listing", "product")
}
AUTOTHROTTLE_ENABLED = False

# Retries and timeouts
RETRY_ENABLED = True
RETRY_TIMES = 3
RETRY_BACKOFF = 5.0             # seconds between attempts
RETRY_HTTP_CODES = [408, 429, 500, 502, 503, 504, 522, 524]
DOWNLOAD_TIMEOUT = 30

# Caching: pages are kept under .scrapy/cache/<spider name> across runs
HTTPCACHE_ENABLED = True
HTTPCACHE_DIR = "cache"
HTTPCACHE_STORAGE = "scrapy.extensions.httpcache.FilesystemCacheStorage"
HTTPCACHE_EXPIRATION_SECS = 0
HTTPCACHE_IGNORE_HTTP_CODES = RETRY_HTTP_CODES

# Middlewares
DOWNLOADER_MIDDLEWARES = {
    "scrapy.downloadermiddlewares.retry.RetryMiddleware": None,
    "noon_scraper.middlewares.BackoffRetryMiddleware": 550,
    # after the cache so cached pages are served without waiting
    "noon_scraper.middlewares.PolitenessMiddleware": 950,
}

# Logging
LOG_LEVEL = "INFO"

# Politeness delays and retry backoff are asyncio sleeps
TWISTED_REACTOR = "twisted.internet.asyncioreactor.AsyncioSelectorReactor"
