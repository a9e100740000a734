"""Infrastructure layer for document store access.

Key responsibilities:
- **Connection management**: Lazy client construction, pooling and disposal
- **Repository pattern**: Generic CRUD and bulk operations for all entities
- **Resilience**: Bounded retry for transient store failures
"""
