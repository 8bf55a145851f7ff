import os

import pandas as pd
import streamlit as st

from stockdesk_client.api import API_URL, APIError, StockdeskAPI

st.set_page_config(page_title="Stockdesk", layout="wide")
st.title("📈 Stockdesk (Client)")

account_id = st.sidebar.number_input(
    "Account id", min_value=1, value=int(os.getenv("ACCOUNT_ID", "1")), step=1
)
api = StockdeskAPI(API_URL, account_id=int(account_id))

# Health
try:
    h = api.health()
    st.success(f"API: {h['status']}")
except Exception as e:
    st.error(f"API not reachable at {API_URL}: {e}")
    st.stop()

try:
    account = api.me()
    st.sidebar.metric("Cash balance", f"${account['balance']:,.2f}")
    st.sidebar.caption(account["username"])
except APIError as e:
    st.sidebar.warning(e.message)
    with st.sidebar.form("register"):
        username = st.text_input("Username")
        if st.form_submit_button("Open account") and username:
            try:
                created = api.register(username)
                st.success(f"Opened account #{created['id']}")
            except APIError as err:
                st.error(err.message)
    st.stop()

# Market
st.subheader("Market")
mcol1, mcol2 = st.columns([2, 1])
search = mcol1.text_input("Search symbol or name", value="")
sector = mcol2.selectbox("Sector", [""] + api.sectors())
listing = api.stocks(limit=100, search=search or None, sector=sector or None)
stocks = pd.DataFrame(listing["stocks"])
if stocks.empty:
    st.info("No stocks listed.")
else:
    st.dataframe(
        stocks[["id", "symbol", "name", "sector", "currentPrice", "change", "changePercent", "high", "low"]],
        use_container_width=True,
    )

# Holdings
st.subheader("Holdings")
pf = api.portfolio()
holdings = pd.DataFrame(pf["portfolio"])
if holdings.empty:
    st.dataframe(pd.DataFrame(columns=["symbol", "quantity", "averagePrice", "currentValue", "profitLoss"]))
else:
    holdings["symbol"] = holdings["stock"].map(lambda s: s["symbol"])
    holdings["currentPrice"] = holdings["stock"].map(lambda s: s["currentPrice"])
    st.dataframe(
        holdings[["symbol", "quantity", "averagePrice", "currentPrice", "totalInvestment",
                  "currentValue", "profitLoss", "profitLossPercent", "todayPL"]],
        use_container_width=True,
    )
summary = pf["summary"]
c1, c2, c3 = st.columns(3)
c1.metric("Invested", f"${summary['totalInvestment']:,.2f}")
c2.metric("Value", f"${summary['totalCurrentValue']:,.2f}")
c3.metric("P/L", f"${summary['totalProfitLoss']:,.2f}", delta=f"{summary['totalProfitLossPercent']:+.2f}%")

st.subheader("Place a Trade")
col1, col2, col3 = st.columns(3)
symbol = col1.text_input("Symbol", value=stocks["symbol"].iloc[0] if not stocks.empty else "")
side = col2.selectbox("Side", ["BUY", "SELL"])
quantity = col3.number_input("Quantity", min_value=1, value=1, step=1)

if st.button("Submit Trade"):
    try:
        stock = api.stock_by_symbol(symbol)
        r = api.execute_trade(stock["id"], side, int(quantity))
        t = r["trade"]
        st.success(
            f"{t['type']} {t['quantity']} {t['stock']['symbol']} @ ${t['price']:.2f}; "
            f"balance ${r['newBalance']:,.2f}"
        )
        st.rerun()
    except APIError as e:
        st.error(e.message)

st.subheader("Recent Trades")
trades = pd.DataFrame(api.my_trades(limit=20)["trades"])
if not trades.empty:
    trades["symbol"] = trades["stock"].map(lambda s: s["symbol"])
    st.dataframe(
        trades[["executedAt", "type", "symbol", "quantity", "price", "totalAmount", "status"]],
        use_container_width=True,
    )
