# Services package init
"""
MManage Backend — Services Layer
=================================

What:  Business logic between routes (HTTP) and the database (persistence).
How:   Services take a session plus plain arguments and return schema objects;
       routes stay thin.

Service Inventory:
    - UserService: users CRUD, password hashing, backup of created users

The backup replication service lives in ``mmanage.backup``; it is built in
the lifespan and reaches services through ``mmanage.dependencies``.
"""
