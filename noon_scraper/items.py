from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import scrapy


class ProductPageItem(scrapy.Item):
    # raw text scraped from one product detail page, "" when the element is missing
    title = scrapy.Field()
    categories = scrapy.Field()            # breadcrumb text, segments glued together
    selling_price = scrapy.Field()         # e.g. "AED 49.00"
    price_before_discount = scrapy.Field()
    product_url = scrapy.Field()
    brand = scrapy.Field()
    model_number = scrapy.Field()          # e.g. "Model Number : HC5447"
    rating = scrapy.Field()                # score and review count without separator, e.g. "4.6123"

    # flags
    is_best_seller = scrapy.Field()        # True when the page shows the best seller badge


@dataclass
class Product:
    category: str
    website: str
    title: str
    selling_price: Decimal
    currency: str
    product_url: str
    brand: str
    rank: int
    price_before_discount: Optional[Decimal] = None
    sku: Optional[str] = None
    rating_score: Optional[Decimal] = None
    rating_count: Optional[int] = None
    is_best_seller: bool = False
