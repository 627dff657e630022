"""
Permission management feature module.

Implements the role/permission matrix with per-mode grants, the permission
cache in front of it, and the admin control plane that edits it.
"""
