import os

import requests

API_URL = os.getenv("API_URL", "http://localhost:8000")


class APIError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class StockdeskAPI:
    """Thin wrapper over the trading service's REST endpoints."""

    def __init__(self, base_url: str = API_URL, account_id=None, session=None, timeout: float = 8):
        self.base_url = base_url.rstrip("/")
        self.account_id = account_id
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.account_id is not None:
            headers["X-Account-Id"] = str(self.account_id)
        r = self.session.request(
            method, f"{self.base_url}{path}", headers=headers, timeout=self.timeout, **kwargs
        )
        if not 200 <= r.status_code < 300:
            try:
                message = r.json().get("error", r.text)
            except ValueError:
                message = r.text
            raise APIError(r.status_code, message)
        return r.json()

    def health(self):
        return self._request("GET", "/health")

    # stocks
    def stocks(self, page: int = 1, limit: int = 20, search: str = None, sector: str = None):
        params = {"page": page, "limit": limit}
        if search:
            params["search"] = search
        if sector:
            params["sector"] = sector
        return self._request("GET", "/stocks", params=params)

    def stock(self, stock_id: int):
        return self._request("GET", f"/stocks/{stock_id}")["stock"]

    def stock_by_symbol(self, symbol: str):
        return self._request("GET", f"/stocks/symbol/{symbol}")["stock"]

    def sectors(self):
        return self._request("GET", "/stocks/data/sectors")["sectors"]

    def create_stock(self, symbol: str, name: str, sector: str, price: float, **extra):
        payload = {"symbol": symbol, "name": name, "sector": sector, "price": price, **extra}
        return self._request("POST", "/stocks", json=payload)["stock"]

    def update_price(self, stock_id: int, price: float):
        return self._request("PATCH", f"/stocks/{stock_id}/price", json={"price": price})["stock"]

    # accounts
    def register(self, username: str, balance: float = None):
        payload = {"username": username}
        if balance is not None:
            payload["balance"] = balance
        return self._request("POST", "/accounts", json=payload)["account"]

    def me(self):
        return self._request("GET", "/accounts/me")["account"]

    # trades
    def execute_trade(self, stock_id: int, side: str, quantity: int):
        return self._request(
            "POST", "/trades/execute", json={"stockId": stock_id, "type": side.upper(), "quantity": quantity}
        )

    def my_trades(self, page: int = 1, limit: int = 20):
        return self._request("GET", "/trades/my-trades", params={"page": page, "limit": limit})

    # portfolio
    def portfolio(self):
        return self._request("GET", "/portfolio/my-portfolio")

    def performance(self):
        return self._request("GET", "/portfolio/performance")["performance"]
