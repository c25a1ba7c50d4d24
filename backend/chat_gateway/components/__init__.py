"""
Chat Gateway Components.

Organized into domain-specific modules:
- core/       - Foundational components (constants, context, DI)
- auth/       - Authentication strategies (bearer credential)
- presence/   - Presence registry and room membership
- connection/ - Connection lifecycle (index, locks, heartbeat, rate limiting, cleanup)
- broadcast/  - Delivery and presence announcements
- events/     - Event types and routing
- data/       - Social graph access (profiles, friendships)
- endpoints/  - WebSocket endpoints (base, mixins, handlers)
- metrics/    - Observability (collector, prometheus)

Import from the specific submodules.
"""
