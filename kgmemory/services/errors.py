"""
Domain exceptions raised by the knowledge graph services.
"""


class KnowledgeGraphError(Exception):
    """Base exception for knowledge graph errors."""
    pass


class ValidationError(KnowledgeGraphError):
    """Invalid input: empty names, reserved or malformed zones, self-referential zone operations."""
    pass


class EntityNotFoundError(KnowledgeGraphError):
    """The operation needs an entity that does not exist."""

    def __init__(self, name: str, zone: str):
        self.name = name
        self.zone = zone
        super().__init__(f'Entity "{name}" not found in zone "{zone}"')


class ZoneNotFoundError(KnowledgeGraphError):
    """The operation needs a zone that does not exist."""

    def __init__(self, zone: str, role: str = ''):
        self.zone = zone
        label = f'{role} zone' if role else 'Zone'
        super().__init__(f'{label} "{zone}" does not exist. Please create it first with add_memory_zone.')
