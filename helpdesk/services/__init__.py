"""
Business logic services package.

WHY: Services contain the ticket rules separated from data access,
following the layering Service → DAO → Model.
"""
