"""
Streamlit UI -- KPI Chat Copilot.

Features:
  - Chat history with option buttons for the current stage
  - Sidebar with the live KPI catalog and session stats
  - Current selection summary and executed SQL
  - Result table, KPI card or bar chart
  - Detail download (xlsx) after a query
"""
import uuid

import streamlit as st
import httpx
import pandas as pd


API_BASE = "http://localhost:3000"
_TIMEOUT = 30

st.set_page_config(
    page_title="KPI Chat Copilot",
    page_icon="bar_chart",
    layout="wide",
    initial_sidebar_state="expanded",
)


if "conversation_id" not in st.session_state:
    st.session_state.conversation_id = uuid.uuid4().hex

if "messages" not in st.session_state:
    st.session_state.messages = []

if "catalog" not in st.session_state:
    st.session_state.catalog = None

if "last" not in st.session_state:
    st.session_state.last = None



def _load_catalog():
    """Fetch /catalog from the API; cache in session_state."""
    try:
        st.session_state.catalog = httpx.get(f"{API_BASE}/catalog", timeout=5).json()
    except Exception:
        st.session_state.catalog = None


def _fetch_session_stats() -> dict | None:
    try:
        return httpx.get(f"{API_BASE}/api/sessions/stats", timeout=3).json()
    except Exception:
        return None


def _fetch_detail() -> bytes | None:
    try:
        resp = httpx.get(
            f"{API_BASE}/api/detail/download",
            params={"conversation_id": st.session_state.conversation_id},
            timeout=_TIMEOUT,
        )
        resp.raise_for_status()
        return resp.content
    except Exception as exc:
        st.error(f"Download failed: {exc}")
        return None


def _send(message: str | None = None, payload: dict | None = None, label: str | None = None):
    """Post one turn to /api/chat and append both sides to the history."""
    st.session_state.messages.append({"role": "user", "content": label or message or ""})
    try:
        resp = httpx.post(
            f"{API_BASE}/api/chat",
            json={
                "conversation_id": st.session_state.conversation_id,
                "message": message,
                "payload": payload,
            },
            timeout=_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
    except httpx.ConnectError:
        st.error("Cannot reach the API. Start it with:\n```\nuvicorn kpichat.api.main:app --port 3000\n```")
        st.stop()
    except httpx.HTTPStatusError as exc:
        st.error(f"API returned {exc.response.status_code}: {exc.response.text}")
        st.stop()

    st.session_state.messages.append({"role": "assistant", "data": data})
    st.session_state.last = data


with st.sidebar:
    st.title("KPI Catalog")

    if st.button("Refresh catalog", use_container_width=True):
        _load_catalog()

    if st.session_state.catalog is None:
        _load_catalog()

    catalog = st.session_state.catalog

    if catalog:
        for c in catalog.get("categories", []):
            st.subheader(c["label"])
            for m in c.get("metrics", []):
                st.markdown(f"- **{m['label']}** `{m['kind']}`")
                if m.get("description"):
                    st.caption(f"  {m['description']}")

        st.divider()
        st.subheader("Filters")
        for d in catalog.get("filter_dimensions", []):
            values = "、".join(v["label"] for v in d.get("values", []))
            st.markdown(f"- **{d['label']}**: {values}")
    else:
        st.info("API not reachable -- start the FastAPI server first.\n\n```\nuvicorn kpichat.api.main:app --port 3000\n```")

    st.divider()

    st.subheader("Sessions")
    stats = _fetch_session_stats()
    if stats:
        c1, c2 = st.columns(2)
        c1.metric("Active", stats.get("size", 0))
        c2.metric("Evicted", stats.get("evicted", 0))

    if st.button("New conversation", use_container_width=True):
        st.session_state.conversation_id = uuid.uuid4().hex
        st.session_state.messages = []
        st.session_state.last = None
        st.rerun()

    st.caption(f"Conversation `{st.session_state.conversation_id[:8]}`")



st.title("KPI Chat Copilot")
st.markdown("Pick a KPI with the buttons, or type a question such as **202510 CT 工程师数量**.")


def _render_chart(chart: dict):
    """Render a chart based on the ChartSpec returned by the API."""
    chart_type = chart.get("chart_type", "table")

    if chart_type == "metric":
        value = chart.get("kpi_value", "—")
        unit = chart.get("unit", "")
        st.metric(label=chart.get("kpi_label", ""), value=f"{value} {unit}".strip())

    elif chart_type == "bar":
        categories = chart.get("categories", [])
        values = chart.get("values", [])
        if categories:
            st.subheader(chart.get("title", ""))
            df = pd.DataFrame({"category": categories, "value": values})
            st.bar_chart(df.set_index("category")[["value"]])


def _render_response(data: dict):
    """Render one assistant turn inside a chat message."""
    st.markdown(data.get("reply", "").replace("\n", "  \n"))

    chart = data.get("chart")
    if chart:
        _render_chart(chart)

    rows = data.get("rows") or []
    if rows and not chart:
        st.dataframe(pd.DataFrame(rows), use_container_width=True)

    with st.expander("Current selection", expanded=False):
        st.text(data.get("summary", ""))
        if data.get("display_sql"):
            st.code(data["display_sql"], language="sql")


for msg in st.session_state.messages:
    with st.chat_message(msg["role"]):
        if msg["role"] == "user":
            st.markdown(msg["content"])
        else:
            _render_response(msg["data"])


# ── Option buttons for the current stage ─────────────────
last = st.session_state.last
if last is None:
    _send(payload={"type": "new_query"}, label="开始")
    st.rerun()

options = last.get("options", [])
if options:
    cols = st.columns(min(len(options), 4))
    for i, opt in enumerate(options):
        if cols[i % len(cols)].button(opt["label"], key=f"opt_{len(st.session_state.messages)}_{i}"):
            _send(payload=opt["payload"], label=opt["label"])
            st.rerun()

if last.get("stage") == "SHOW_RESULT" and st.button("准备明细文件 (xlsx)"):
    content = _fetch_detail()
    if content is not None:
        st.download_button(
            "下载明细",
            content,
            file_name="detail.xlsx",
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )


question = st.chat_input("输入问题，例如：查询CT的工程师数量")
if question:
    _send(message=question)
    st.rerun()
