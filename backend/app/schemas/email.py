"""
Email Template Schemas.
"""

from pydantic import BaseModel


class EmailTemplate(BaseModel):
    id: str
    name: str
    subject: str
    description: str = ""
