"""
Common schema configuration shared by every endpoint.
"""

from pydantic.alias_generators import to_camel


# JSON bodies use camelCase; Python code uses snake_case
CAMEL_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
}
