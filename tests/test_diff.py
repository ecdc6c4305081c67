from variantwatch.diff import diff_item
from variantwatch.models import ChangeEvent, ColorKey, Snapshot, StockStatus, TrackedItem

BLACK = ColorKey(code="69702", name="Black")
WHITE = ColorKey(code="12345", name="White")
RED = ColorKey(code="55555", name="Red")


def make_item(**overrides) -> TrackedItem:
    fields = dict(
        product_id="P1",
        color="Black",
        size="M",
        name="Metal Vent Tech",
        product_line="Metal Vent Tech",
        url="https://shop.lululemon.com/p/x/Metal-Vent/_/P1?color=69702&sz=M",
        stock_status=StockStatus.IN_STOCK,
        current_price=78.0,
        available_colors=frozenset({BLACK, WHITE}),
        track_new_colors=True,
    )
    fields.update(overrides)
    return TrackedItem(**fields)


def test_sold_out_transition_is_the_only_event():
    item = make_item()
    fresh = Snapshot(current_price=78.0, stock_status=StockStatus.SOLD_OUT)

    assert diff_item(item, fresh) == [
        ChangeEvent.status_change(StockStatus.IN_STOCK, StockStatus.SOLD_OUT)
    ]


def test_back_in_stock_is_reported():
    item = make_item(stock_status=StockStatus.SOLD_OUT)
    fresh = Snapshot(current_price=78.0, stock_status=StockStatus.IN_STOCK)

    changes = diff_item(item, fresh)

    assert [c.type for c in changes] == [ChangeEvent.STATUS_CHANGE]
    assert changes[0].from_value is StockStatus.SOLD_OUT
    assert changes[0].to_value is StockStatus.IN_STOCK


def test_price_drop_and_sale_in_order():
    item = make_item(current_price=58.0, original_price=None, on_sale=False)
    fresh = Snapshot(current_price=45.0, original_price=58.0, on_sale=True)

    assert diff_item(item, fresh) == [
        ChangeEvent.price_change(58.0, 45.0),
        ChangeEvent.went_on_sale(),
    ]


def test_unknown_prices_are_not_price_changes():
    assert diff_item(make_item(current_price=None), Snapshot(current_price=40.0)) == []
    assert diff_item(make_item(current_price=40.0), Snapshot(current_price=None)) == []


def test_sale_ending_is_not_separately_alerted():
    item = make_item(current_price=45.0, original_price=58.0, on_sale=True)
    fresh = Snapshot(current_price=45.0, on_sale=False)
    assert diff_item(item, fresh) == []


def test_new_colors_reported_by_name_in_stable_order():
    item = make_item()
    fresh = Snapshot(current_price=78.0, available_colors=frozenset({BLACK, WHITE, RED, ColorKey("1", "Blue")}))

    changes = diff_item(item, fresh)

    assert changes == [ChangeEvent.new_color("Blue"), ChangeEvent.new_color("Red")]


def test_new_colors_need_opt_in_and_both_color_sets():
    fresh = Snapshot(current_price=78.0, available_colors=frozenset({BLACK, RED}))

    assert diff_item(make_item(track_new_colors=False), fresh) == []
    assert diff_item(make_item(available_colors=frozenset()), fresh) == []
    assert diff_item(make_item(), Snapshot(current_price=78.0)) == []


def test_named_colors_compare_by_name():
    stored = frozenset({ColorKey(code="069299", name="Black", by_name=True)})
    fresh = frozenset({
        ColorKey(code="Black", name="Black", by_name=True),
        ColorKey(code="White", name="White", by_name=True),
    })
    item = make_item(available_colors=stored)

    changes = diff_item(item, Snapshot(current_price=78.0, available_colors=fresh))

    assert changes == [ChangeEvent.new_color("White")]


def test_diff_is_deterministic_and_pure():
    item = make_item(current_price=58.0)
    before = item.to_dict()
    fresh = Snapshot(
        current_price=45.0,
        original_price=58.0,
        on_sale=True,
        stock_status=StockStatus.LOW_STOCK,
        available_colors=frozenset({BLACK, WHITE, RED}),
    )

    first = diff_item(item, fresh)
    second = diff_item(item, fresh)

    assert first == second
    assert [c.type for c in first] == [
        ChangeEvent.STATUS_CHANGE,
        ChangeEvent.PRICE_CHANGE,
        ChangeEvent.WENT_ON_SALE,
        ChangeEvent.NEW_COLOR,
    ]
    assert item.to_dict() == before
