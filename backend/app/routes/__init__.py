# Routes package init
"""
Billow Backend — API Routes Package
====================================

What:  HTTP route handlers that accept requests and return responses.
How:   Each route module handles one resource.

Route Inventory:
    - homes.py:    /homes (list, get, search, create, update, delete)
    - uploads.py:  GET /uploads/{path}   (stored listing images)
    - health.py:   GET /health           (service health check)

Routes are thin: extract request data, call a service, shape the response.
Business logic lives in app.services.
"""
