"""Core Business Logic Module

Provisioning logic independent of the HTTP framework.

Module Structure:
    - errors.py            : SCIM error taxonomy (ScimError and subclasses)
    - models.py            : Clients, tokens, webhook subscriptions
    - predicates.py        : Backend-agnostic query predicates
    - filter_parser.py     : SCIM filter tokenizer, parser and compiler
    - repositories.py      : Storage interfaces + in-memory implementations
    - token_authority.py   : OAuth 2.0 client credentials, token validation
    - scim_transformer.py  : Directory record ↔ SCIM 2.0 transformations
    - validators.py        : Input validation (SCIM payloads)
    - resource_gateway.py  : /Users and /Groups operations
    - bulk_processor.py    : /Bulk operations
    - webhooks.py          : Webhook dispatcher and signatures
    - scheduler.py         : Background delivery scheduler
    - audit.py             : Request audit log
    - services.py          : Service wiring

Import explicitly when needed:
    from scim_provisioning.core.filter_parser import compile_scim_filter
    from scim_provisioning.core.resource_gateway import ResourceGateway, ResourceKind
"""
