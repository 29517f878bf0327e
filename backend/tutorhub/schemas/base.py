from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies arrive camelCased; fields stay snake_case in Python"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
