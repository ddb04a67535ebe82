"""
DuckDB integration.

The engine registers raster and geometry functions on a DuckDB connection,
encodes raster values into row columns, and drives rasterization over relations.
"""
