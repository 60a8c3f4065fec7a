"""
Ingestion package: label normalization, entity resolution, the wine-scan
queue processor and the scheduled job entry points.
"""
