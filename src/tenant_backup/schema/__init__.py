"""Live schema introspection used to verify the table manifest.

Usage:
    from tenant_backup.schema import SchemaIntrospector
"""

from tenant_backup.schema.introspector import SchemaIntrospector

__all__ = ["SchemaIntrospector"]
