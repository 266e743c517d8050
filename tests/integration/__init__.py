"""
tests/integration/
~~~~~~~~~~~~~~~~~~
Integration tests that call real external APIs.

These tests are SKIPPED by default. To run them:

    INTEGRATION_TESTS=1 pytest tests/integration/ -v          # all groups
    INTEGRATION_TESTS=ip,nominatim pytest tests/integration/   # some groups

Keyed checks also need FIELDTRACK_MAPBOX_TOKEN and/or
FIELDTRACK_GOOGLE_API_KEY.

Rate Limit Considerations:
- ipinfo.io / ipapi.co: small anonymous daily quotas - avoid in CI
- Nominatim: 1 req/sec - rate limited in code
- ipwho.is: be respectful with request frequency
- Mapbox / Google: billed per request on the key's account
"""
