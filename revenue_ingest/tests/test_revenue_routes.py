from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from revenue_ingest.api.app import app
from revenue_ingest.api.routes_revenue import default_source_factory
from revenue_ingest.api.schemas import MerchantAccount
from revenue_ingest.ingest.adapters.memory_source import InMemoryPaymentsSource

SHANGHAI = ZoneInfo("Asia/Shanghai")


def _ts(month: int, day: int, hour: int = 12) -> int:
    return int(datetime(2024, month, day, hour, tzinfo=SHANGHAI).timestamp())


def _charge(charge_id: str, ts: int, amount: int, currency: str = "usd", **kw) -> dict:
    base = {"id": charge_id, "amount": amount, "currency": currency, "created": ts, "status": "succeeded"}
    base.update(kw)
    return base


@pytest.fixture
def sources():
    store = {
        "sk_alpha": InMemoryPaymentsSource(
            charges=[
                _charge("a1", _ts(3, 1, 0), 2500),
                _charge("a2", _ts(3, 1, 23), 2500),
                _charge("a3", _ts(2, 29), 9900),
                _charge("a4", _ts(3, 2), 100, refunded=True),
            ],
            account={"id": "acct_a", "business_profile": {"name": "Alpha Shop"}},
        ),
        "sk_beta": InMemoryPaymentsSource(
            charges=[_charge("b1", _ts(3, 31, 23), 30000, "jpy")],
            account={"id": "acct_b", "email": "beta@example.com"},
            payouts=[{"id": "po_1", "amount": 10000, "currency": "jpy", "created": _ts(3, 5), "status": "paid"}],
        ),
    }
    app.state.source_factory = lambda account: store[account.api_key]
    return store


@pytest.fixture
def client():
    return TestClient(app)


def _body(**kw) -> dict:
    body = {
        "accounts": [{"api_key": "sk_alpha"}, {"api_key": "sk_beta"}],
        "year": 2024,
        "month": 3,
        "timezone": "Asia/Shanghai",
    }
    body.update(kw)
    return body


def test_revenue_for_month(client, sources):
    r = client.post("/v1/revenue", json=_body())
    assert r.status_code == 200, r.text
    data = r.json()

    assert [m["merchantName"] for m in data["merchants"]] == ["Alpha Shop", "beta@example.com"]
    assert data["period"] == {"start": "2024-03-01", "end": "2024-03-31"}
    assert data["totalRevenue"] == {"JPY": 30000, "USD": 50.0}
    assert len(data["dailyTotals"]) == 31
    day1 = data["dailyTotals"][0]
    assert day1 == {"date": "2024-03-01", "orderCount": 2, "revenue": {"USD": 50.0}}
    assert data["dailyTotals"][-1]["revenue"] == {"JPY": 30000}
    assert data["totalBreakdown"]["oneTime"] == {"JPY": 30000, "USD": 50.0}
    assert "displayCurrency" not in data
    assert all(s.closed for s in sources.values())


def test_api_key_never_echoed(client, sources):
    r = client.post("/v1/revenue", json=_body())
    assert "sk_alpha" not in r.text


def test_display_currency_conversion(client, sources):
    async def rates(base):
        return {"USD": 1.0, "JPY": 150.0}

    app.state.rates_provider = rates
    r = client.post("/v1/revenue", json=_body(display_currency="usd"))
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["displayCurrency"] == "USD"
    assert data["convertedRevenue"] == {"USD": 250.0}
    assert data["convertedByCurrency"]["JPY"]["USD"] == 200.0
    assert data["convertedByCurrency"]["USD"]["USD"] == 50.0


def test_time_slices_give_same_totals(client, sources):
    plain = client.post("/v1/revenue", json=_body()).json()
    sliced = client.post("/v1/revenue", json=_body(time_slices=5)).json()
    assert sliced["totalRevenue"] == plain["totalRevenue"]
    assert sliced["dailyTotals"] == plain["dailyTotals"]


def test_upstream_failure_degrades_one_merchant(client, sources):
    sources["sk_beta"]._fail_on.add("list_charges")
    r = client.post("/v1/revenue", json=_body())
    assert r.status_code == 200
    data = r.json()
    assert data["merchants"][1]["revenue"] == {}
    assert data["totalRevenue"] == {"USD": 50.0}


def test_no_accounts_is_bad_request(client, sources):
    r = client.post("/v1/revenue", json=_body(accounts=[]))
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "no_merchant_accounts"


def test_year_without_month_is_bad_request(client, sources):
    body = _body()
    del body["month"]
    r = client.post("/v1/revenue", json=body)
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "invalid_date_range"


def test_unknown_timezone_is_bad_request(client, sources):
    r = client.post("/v1/revenue", json=_body(timezone="Mars/Olympus"))
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "invalid_date_range"


def test_month_out_of_range_is_validation_error(client, sources):
    r = client.post("/v1/revenue", json=_body(month=13))
    assert r.status_code == 422


def test_subscription_overview(client, sources):
    body = _body(accounts=[{"api_key": "sk_alpha", "name": "A"}, {"api_key": "sk_beta", "name": "B"}])
    sources["sk_alpha"]._fail_on.add("list_subscriptions")
    r = client.post("/v1/revenue/subscriptions", json=body)
    assert r.status_code == 200, r.text
    data = r.json()
    alpha, beta = data["merchants"]
    assert alpha["merchant_name"] == "A"
    assert "error" in alpha
    assert beta["merchant_name"] == "B"
    assert beta["payouts"] == {"JPY": 10000}
    assert data["period"] == {"start": "2024-03-01", "end": "2024-03-31"}


def test_health(client):
    assert client.get("/health").json() == {"ok": True}


def test_subscription_overview_isolates_source_factory_failure(client, sources):
    def factory(account):
        if account.api_key == "sk_bad":
            raise RuntimeError("cannot build client")
        return sources[account.api_key]

    app.state.source_factory = factory
    body = _body(accounts=[{"api_key": "sk_beta", "name": "B"}, {"api_key": "sk_bad", "name": "Bad"}])
    r = client.post("/v1/revenue/subscriptions", json=body)
    assert r.status_code == 200, r.text
    beta, bad = r.json()["merchants"]
    assert beta["payouts"] == {"JPY": 10000}
    assert bad == {"merchant_name": "Bad", "error": "cannot build client"}
    assert sources["sk_beta"].closed


def test_subscription_overview_payouts_in_display_currency(client, sources):
    async def rates(base):
        assert base == "USD"
        return {"USD": 1.0, "JPY": 100.0}

    app.state.rates_provider = rates
    body = _body(accounts=[{"api_key": "sk_beta"}], display_currency="usd")
    beta = client.post("/v1/revenue/subscriptions", json=body).json()["merchants"][0]
    assert beta["total_payouts"] == {"USD": 100.0}


def test_account_base_url_is_not_accepted(monkeypatch):
    monkeypatch.setenv("PAYMENTS_API_BASE_URL", "https://payments.test")
    account = MerchantAccount.model_validate({"api_key": "sk_x", "base_url": "http://169.254.169.254"})
    assert not hasattr(account, "base_url")

    source = default_source_factory(account)
    assert source._client.base_url.host == "payments.test"


def test_bad_configured_timezone_is_server_error(monkeypatch, sources):
    monkeypatch.setenv("REVENUE_TIMEZONE", "Not/AZone")
    client = TestClient(app, raise_server_exceptions=False)
    body = _body()
    del body["timezone"]

    assert client.post("/v1/revenue", json=body).status_code == 500
    assert client.post("/v1/revenue", json=_body()).status_code == 200


CSV_EXPORT = (
    "id,amount,currency,created,status,refunded,customer_email\n"
    f"ch_1,2500,usd,{_ts(3, 4)},succeeded,false,a@b.c\n"
    f"ch_2,1500,usd,2024-03-04T10:00:00+08:00,succeeded,,\n"
    f"ch_3,900,usd,{_ts(3, 5)},succeeded,true,\n"
    f"ch_4,-5,usd,{_ts(3, 5)},succeeded,,\n"
    f"ch_5,100,usd,{_ts(2, 5)},succeeded,,\n"
)


def test_revenue_from_uploaded_export(client):
    r = client.post(
        "/v1/revenue/files",
        data={"merchant_name": "Export Shop", "year": "2024", "month": "3", "timezone": "Asia/Shanghai"},
        files={"file": ("charges.csv", CSV_EXPORT.encode("utf-8"), "text/csv")},
    )
    assert r.status_code == 200, r.text
    data = r.json()
    assert data["merchants"][0]["merchantName"] == "Export Shop"
    assert data["totalRevenue"] == {"USD": 40.0}
    day4 = {d["date"]: d for d in data["dailyTotals"]}["2024-03-04"]
    assert day4["orderCount"] == 2
    assert data["rowsAccepted"] == 4
    assert data["rejectionBreakdown"] == {"INVALID_AMOUNT": 1}


def test_uploaded_export_missing_columns(client):
    r = client.post(
        "/v1/revenue/files",
        data={"year": "2024", "month": "3"},
        files={"file": ("charges.csv", b"id,amount\nch_1,100\n", "text/csv")},
    )
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "invalid_file"


def test_uploaded_export_empty_file(client):
    r = client.post("/v1/revenue/files", files={"file": ("charges.csv", b"", "text/csv")})
    assert r.status_code == 400
    assert r.json()["detail"]["message"] == "empty file"
