from variantwatch.models import ColorKey, Region, StockStatus, TrackedItem, detect_region


def test_stock_status_normalizes_loose_wording():
    assert StockStatus.normalize("low_stock") is StockStatus.LOW_STOCK
    assert StockStatus.normalize(StockStatus.SOLD_OUT) is StockStatus.SOLD_OUT
    assert StockStatus.normalize("Low stock") is StockStatus.LOW_STOCK
    assert StockStatus.normalize("Only a few left") is StockStatus.LOW_STOCK
    assert StockStatus.normalize("Sold Out") is StockStatus.SOLD_OUT
    assert StockStatus.normalize("backorder") is StockStatus.IN_STOCK
    assert StockStatus.normalize(None) is StockStatus.IN_STOCK


def test_detect_region_from_hostname():
    assert detect_region("https://shop.lululemon.com/p/x/_/prod1?color=1") == Region.US
    assert detect_region("https://www.lululemon.com.hk/en-hk/p/x/prod1.html") == Region.HK
    assert detect_region("https://www.lululemon.com.au/en-au/p/x/prod1.html") == Region.AU
    assert detect_region("https://www.lululemon.co.jp/ja-jp/p/x/prod1.html") == Region.INTL


def test_color_key_equality_follows_region_rule():
    assert ColorKey("69702", "Black") == ColorKey("69702", "Noir")
    assert ColorKey("69702", "Black") != ColorKey("11111", "Black")
    assert ColorKey("069299", "Black", by_name=True) == ColorKey("Black", "Black", by_name=True)
    assert len({ColorKey("a", "Black", by_name=True), ColorKey("b", "Black", by_name=True)}) == 1


def test_tracked_item_from_stored_dict():
    item = TrackedItem.from_dict({
        "productId": "prod11710026",
        "color": "Black",
        "size": "M",
        "name": "Metal Vent Tech",
        "url": "https://www.lululemon.com.hk/en-hk/p/x/prod11710026.html",
        "currentPrice": "590",
        "stockStatus": "sold_out",
        "availableColors": [{"code": "Black", "name": "Black"}],
    })

    assert item.region == Region.HK
    assert item.product_line == "Metal Vent Tech"
    assert item.current_price == 590.0
    assert item.stock_status is StockStatus.SOLD_OUT
    assert item.track_new_colors is True
    assert next(iter(item.available_colors)).by_name is True
    assert item.to_dict()["stockStatus"] == "sold_out"
