import pytest
from scrapy.settings import Settings

from noon_scraper.items import ProductPageItem


@pytest.fixture
def settings(tmp_path):
    s = Settings()
    s.setmodule("noon_scraper.settings", priority="project")
    s.set("OUTPUT_CSV", str(tmp_path / "products.csv"))
    return s


@pytest.fixture
def make_page():
    def make(**fields):
        values = {
            "title": "Philips OneBlade Trimmer",
            "categories": "HomeBeautyShavers",
            "selling_price": "AED 129.00",
            "price_before_discount": "",
            "product_url": "https://www.noon.com/uae-en/p/1",
            "brand": "Philips",
            "model_number": "Model Number : QP2724",
            "rating": "4.61523",
            "is_best_seller": False,
        }
        values.update(fields)
        return ProductPageItem(**values)
    return make
