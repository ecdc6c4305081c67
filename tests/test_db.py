from openpyxl import load_workbook

from variantwatch.db import NOTIFICATION_MAP_KEY, TRACKED_PRODUCTS_KEY, Database, resolve_sqlite_path


def test_resolve_sqlite_path_handles_relative(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = resolve_sqlite_path("sqlite:///./relative.db")
    assert path == tmp_path / "relative.db"


def test_database_initializes_schema(tmp_path):
    db_path = tmp_path / "variantwatch.db"
    db = Database(path=db_path)
    db.initialize()

    assert db_path.exists()
    assert db_path.stat().st_size > 0


def test_get_returns_default_for_missing_key(tmp_path):
    db = Database(path=tmp_path / "variantwatch.db")
    db.initialize()

    assert db.get(TRACKED_PRODUCTS_KEY, []) == []
    assert db.get("missing") is None


def test_set_many_writes_all_keys(tmp_path):
    db = Database(path=tmp_path / "variantwatch.db")
    db.initialize()
    db.set(NOTIFICATION_MAP_KEY, {"old": "https://example.com/old"})

    db.set_many({
        TRACKED_PRODUCTS_KEY: [{"productId": "P1", "color": "黒", "size": "M"}],
        NOTIFICATION_MAP_KEY: {"n1": "https://example.com/p1"},
    })

    assert db.get(TRACKED_PRODUCTS_KEY) == [{"productId": "P1", "color": "黒", "size": "M"}]
    assert db.get(NOTIFICATION_MAP_KEY) == {"n1": "https://example.com/p1"}


def test_runs_are_listed_newest_first(tmp_path):
    db = Database(path=tmp_path / "variantwatch.db")
    db.initialize()
    db.add_run("2025-01-01T00:00:00", "success", "items(checked=1 / failed=0)")
    db.add_run("2025-01-01T01:00:00", "partial_failure", None)

    runs = list(db.recent_runs())

    assert runs[0] == ("2025-01-01T01:00:00", "partial_failure", None)
    assert runs[1][1] == "success"


def test_export_items_to_xlsx(tmp_path):
    db = Database(path=tmp_path / "export.db")
    db.initialize()
    db.set(TRACKED_PRODUCTS_KEY, [{
        "productId": "prod11710026",
        "name": "Metal Vent Tech",
        "color": "Black",
        "size": "M",
        "region": "US",
        "stockStatus": "low_stock",
        "currentPrice": 58,
        "originalPrice": 78,
        "onSale": True,
        "url": "https://shop.lululemon.com/p/x/_/prod11710026",
    }])

    export_path = tmp_path / "items.xlsx"
    db.export_items_to_xlsx(export_path)

    assert export_path.exists()
    worksheet = load_workbook(export_path).active
    headers = [cell.value for cell in next(worksheet.iter_rows(min_row=1, max_row=1))]
    assert headers[:4] == ["product_id", "name", "color", "size"]
    data_row = [cell.value for cell in next(worksheet.iter_rows(min_row=2, max_row=2))]
    assert data_row[0] == "prod11710026"
    assert data_row[5] == "low_stock"
    assert data_row[6] == 58
