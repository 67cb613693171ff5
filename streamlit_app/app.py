from __future__ import annotations

import pandas as pd
import streamlit as st
import altair as alt
from pymongo import MongoClient

import certifi
from dotenv import dotenv_values

from insight_pipeline.aggregate.merge import chunk_to_frame
from insight_pipeline.errors import ChunkCodecError
from insight_pipeline.models import MetricKind, Step
from insight_pipeline.persist.chunk_store import decode_chunk

# =====================================================
# Page config
# =====================================================
st.set_page_config(page_title="Delivery Insights", layout="wide")
st.title("🚀 Delivery Performance Insights")

# =====================================================
# MongoDB connection (strict: read from .env only)
# =====================================================
# Load values explicitly from a .env file so we do not accidentally
# accept MONGO_URI from other environment sources.
_env = dotenv_values(".env")
MONGO_URI = _env.get("MONGO_URI")
MONGO_DB = _env.get("MONGO_DB") or "insights"
CHUNKS_COLLECTION = _env.get("CHUNKS_COLLECTION") or "insight_chunks"
MONGO_TLS = (_env.get("MONGO_TLS") or "true").lower() in {"1", "true", "yes", "on"}

if not MONGO_URI:
    st.error(
        "Missing `MONGO_URI` in `.env`. Please create a `.env` file with `MONGO_URI=<your mongodb uri>` (do not put secrets in source control)."
    )
    st.stop()

try:
    tls_options = {"tls": True, "tlsCAFile": certifi.where()} if MONGO_TLS else {}
    client = MongoClient(
        MONGO_URI,
        serverSelectionTimeoutMS=30000,
        socketTimeoutMS=30000,
        connectTimeoutMS=30000,
        **tls_options,
    )
    # fail fast: ensure the client can reach the server
    client.admin.command("ping")
    chunks = client[MONGO_DB][CHUNKS_COLLECTION]
except Exception as exc:  # pragma: no cover - runtime failure handling
    st.error(f"Unable to connect to MongoDB: {exc}")
    st.stop()


# =====================================================
# Helpers
# =====================================================
def load_series(kind: MetricKind, step: Step) -> pd.DataFrame:
    """Load one series of every stored chunk of `kind` into a DataFrame.

    Args:
        kind: Metric kind to load.
        step: Granularity to extract from each chunk.

    Returns:
        pandas.DataFrame with an `application_id` column, or an empty DataFrame.
    """
    frames = []
    for doc in chunks.find({"kind": kind.value}):
        try:
            chunk = decode_chunk(bytes(doc["data"]))
        except ChunkCodecError as exc:
            st.warning(f"Skipping unreadable chunk {doc['_id']}: {exc}")
            continue
        df = chunk_to_frame(chunk, step)
        if df.empty:
            continue
        df["application_id"] = doc["_id"].rsplit("/", 1)[-1].removesuffix(".json")
        frames.append(df)
    return pd.concat(frames, ignore_index=True) if frames else pd.DataFrame()


def kpi(label: str, value) -> None:
    """Display a simple KPI metric in the dashboard."""
    st.metric(label, value)


# =====================================================
# Controls
# =====================================================
step = Step(
    st.radio("Granularity", [s.value for s in Step], horizontal=True)
)

df_freq = load_series(MetricKind.DEPLOYMENT_FREQUENCY, step)
df_cfr = load_series(MetricKind.CHANGE_FAILURE_RATE, step)

apps = sorted(
    set(df_freq.get("application_id", pd.Series(dtype=str)))
    | set(df_cfr.get("application_id", pd.Series(dtype=str)))
)
selected_apps = st.multiselect("Applications", apps, default=apps[: min(6, len(apps))])

# =====================================================
# SECTION 0 — OVERVIEW
# =====================================================
st.header("📌 Overview")

c1, c2, c3 = st.columns(3)
with c1:
    kpi("Applications", len(apps))
with c2:
    total = int(df_freq["deploy_count"].sum()) if not df_freq.empty else 0
    kpi("Deployments", total)
with c3:
    if df_cfr.empty:
        kpi("Change Failure Rate", "N/A")
    else:
        s = int(df_cfr["success_count"].sum())
        f = int(df_cfr["failure_count"].sum())
        kpi("Change Failure Rate", f"{(f / (s + f) if s + f else 0.0):.1%}")

st.divider()

# =====================================================
# SECTION 1 — DEPLOYMENT FREQUENCY
# =====================================================
st.header("📈 Deployment Frequency")

if df_freq.empty:
    st.warning("No deployment frequency data. Run `insight-pipeline collect`.")
else:
    df_plot = df_freq[df_freq["application_id"].isin(selected_apps)]
    chart = (
        alt.Chart(df_plot)
        .mark_bar()
        .encode(
            x=alt.X("bucket:T", title=step.value.title()),
            y=alt.Y("deploy_count:Q", title="Deployments"),
            color=alt.Color("application_id:N", title="Application"),
            tooltip=["bucket:T", "application_id:N", "deploy_count:Q"],
        )
        .properties(height=320)
    )
    st.altair_chart(chart, width="stretch")

st.divider()

# =====================================================
# SECTION 2 — CHANGE FAILURE RATE
# =====================================================
st.header("🧯 Change Failure Rate")

if df_cfr.empty:
    st.warning("No change failure rate data. Run `insight-pipeline collect`.")
else:
    df_plot = df_cfr[df_cfr["application_id"].isin(selected_apps)]
    chart = (
        alt.Chart(df_plot)
        .mark_line(point=True)
        .encode(
            x=alt.X("bucket:T", title=step.value.title()),
            y=alt.Y("rate:Q", title="Failure Rate", axis=alt.Axis(format="%")),
            color=alt.Color("application_id:N", title="Application"),
            tooltip=["bucket:T", "application_id:N", "rate:Q", "success_count:Q", "failure_count:Q"],
        )
        .properties(height=320)
    )
    st.altair_chart(chart, width="stretch")
    st.dataframe(df_plot.drop(columns=["timestamp"]), width="stretch")

# =====================================================
# Footer
# =====================================================
st.caption("Deployment records • MongoDB • Streamlit • Insight rollups")
