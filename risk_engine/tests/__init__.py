"""
Test suite for the Practice Risk Engine.

Modules:
- test_feature_extraction: Event history -> FeatureSet
- test_risk_scoring: Weighted ladders, normalisation, levels
- test_anomaly_detection: Z-score, IQR, percentage change, severity
- test_indicators: Red flags, protective factors, retention strategy, anomaly context
- test_outcome_validation: Confusion matrix, anomaly lifecycle, statistics
- test_assessment_service: Cache, batch, outcomes, reports
- test_repository: asyncpg persistence against a mocked pool
- test_api: Router functions and HTTP error mapping

Shared fixtures live in conftest.py; data builders in factories.py.
"""
