"""SCIM 2.0 provisioning gateway.

To use the Flask app:
    from scim_provisioning.flask_app import create_app

To use the services without HTTP:
    from scim_provisioning.core.services import build_services
"""
# Note: flask_app is not imported here so the core services stay usable
# from scripts without creating an application.
