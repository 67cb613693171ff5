"""insight_pipeline package.

Contains modules for paging deployment records out of a record store,
reducing them into delivery-performance data points, folding those points
into persisted rollup chunks, and serving the rollups to a Streamlit
dashboard.

Architecture:
- Records → per-bucket data points → Daily/Weekly/Monthly/Yearly chunks
- Chunks are stored in MongoDB as serialized blobs, one per application/metric
- Pydantic models validate records and chunk state
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
