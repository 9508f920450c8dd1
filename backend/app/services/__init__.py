# Services package init
"""
Billow Backend — Services Layer
================================

What:  Business logic between routes (HTTP) and the database/cache.
How:   Services take plain values and schemas, apply rules, return schemas.
       They're assembled per request in app.dependencies.

Service Inventory:
    - HomeStore:    persistence for the `homes` table (SQLAlchemy)
    - HomeCache:    Redis read-through cache with a circuit breaker
    - HomeService:  orchestrates store, cache and uploads for the routes
    - FileService:  image upload validation, storage and cleanup
    - image_paths:  rewrites uploaded image fields to public URLs
    - pagination:   page/limit arithmetic and previous/next references
"""
