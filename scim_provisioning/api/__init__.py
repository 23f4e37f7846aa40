"""HTTP layer: Flask blueprints for the SCIM gateway.

Blueprints:
    - scim.py       : /Users, /Groups, /.search and /Bulk
    - oauth.py      : client-credentials token endpoint
    - discovery.py  : ServiceProviderConfig, ResourceTypes, Schemas (public)
    - webhooks.py   : webhook subscription management
    - health.py     : liveness and readiness probes
"""
