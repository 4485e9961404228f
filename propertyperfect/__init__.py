"""
PropertyPerfect Backend
-----------------------
JSON API for AI real-estate photo enhancement with a prepaid credit ledger.

This package contains:
- config: Application configuration
- db: Database connection utilities
- middleware: Bearer/admin decorators for routes
- routes/: Flask blueprints for API endpoints
- services/: Business logic services
"""

__version__ = "1.0.0"
