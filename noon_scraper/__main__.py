"""Run the noon crawl without the scrapy command: ``python -m noon_scraper``."""
import argparse
import sys

from scrapy.crawler import CrawlerProcess
from scrapy.settings import Settings

from noon_scraper.spiders.noon import NoonSpider


def main(argv=None):
    parser = argparse.ArgumentParser(description="Collect notable noon products into a CSV file.")
    parser.add_argument("--pages", type=int, help="number of listing pages to walk")
    parser.add_argument("--category", help="listing path relative to the site root")
    parser.add_argument("--output", help="CSV file to append to")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    args = parser.parse_args(argv)

    settings = Settings()
    settings.setmodule("noon_scraper.settings", priority="project")
    if args.log_level:
        settings.set("LOG_LEVEL", args.log_level.upper(), priority="cmdline")

    process = CrawlerProcess(settings)
    process.crawl(NoonSpider, pages=args.pages, category=args.category, output=args.output)
    process.start()
    return 1 if process.bootstrap_failed else 0


if __name__ == "__main__":
    sys.exit(main())
