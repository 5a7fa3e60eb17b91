# Routes package init
"""
MManage Backend — API Routes Package
=====================================

What:  HTTP route handlers that accept requests and return responses.

Route Inventory:
    - users.py:   POST   /users            (create, then back up)
                  GET    /users            (offset pagination)
                  GET    /users/{id}
                  PATCH  /users/{id}
                  DELETE /users/{id}
    - health.py:  GET    /health           (database + backup store status)

Routes are thin: extract request data, call a service, shape the response.
"""
