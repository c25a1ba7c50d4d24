"""
Shared module for the realtime chat gateway.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging and security audit helpers

- shared.security: Credential handling
  - auth.py: Bearer claim decoding and identity resolution

- shared.infrastructure: Database and messaging
  - db.py: SQLAlchemy engine and sessions
  - models.py: Social graph ORM models (users, friendships)
  - correlation.py: Request / connection correlation IDs
  - events/: Redis pool and status event publishing

IMPORT EXAMPLES:
    from shared.config.settings import settings
    from shared.config.logging import get_logger
    from shared.security.auth import decode_bearer_claims, resolve_identity
    from shared.infrastructure.db import get_db_context
"""
