"""
Practice Risk Engine Package.

Churn risk scoring from weighted behavioral features and anomaly detection on
business metrics, with validation of predictions against ground truth.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, database, errors and dependencies
    - models: Pydantic schemas and enums
    - services: Feature extraction, scoring, detection, validation
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"
