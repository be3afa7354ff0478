"""
MHC Control Panel Test Suite.

This package contains:
- unit/: Service tests against a temporary SQLite database
- integration/: API tests through TestClient and CLI tests with a fake S3
"""
