"""
storesync - tenant-scoped ingestion and reporting for commerce, ads and analytics data
"""
__version__ = "1.0.0"
