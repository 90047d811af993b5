"""Domain enumerations: project pipeline, resources, and sync states."""

from enum import Enum


class _ValuesMixin:
    """Mixin that adds a values() classmethod to str Enums."""

    @classmethod
    def values(cls) -> list[str]:
        """Return all valid values as strings."""
        return [member.value for member in cls]


class ProjectStatus(_ValuesMixin, str, Enum):
    """Kanban columns a project moves through."""

    BRIEFING = "Briefing"
    ROTEIRO = "Roteiro"
    CAPTACAO = "Captação"
    EDICAO = "Edição"
    ENTREGA = "Entrega"
    OUTROS = "Outros"
    REVISAO = "Revisão"
    AGUARDANDO_APROVACAO = "Aguardando Aprovação"
    APROVADO = "Aprovado"
    EM_PAUSA = "Em Pausa"
    CANCELADO = "Cancelado"


class ResourceKind(_ValuesMixin, str, Enum):
    """Mutable resource kinds that produce change events."""

    PROJECT = "project"
    COMMENT = "comment"
    NOTE = "note"
    NPS_RESPONSE = "nps-response"
    STATUS_LOG = "status-log"
    PROJECT_MUSIC = "project-music"
    PROJECT_VOICE = "project-voice"


class ChangeAction(_ValuesMixin, str, Enum):
    """What happened to the resource."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class EntryState(_ValuesMixin, str, Enum):
    """Staleness state of a client cache entry."""

    FRESH = "fresh"
    STALE = "stale"
    FETCHING = "fetching"
    ERROR = "error"


class ConnectionStatus(_ValuesMixin, str, Enum):
    """Transport channel session state."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"


class ReconcileState(_ValuesMixin, str, Enum):
    """Reconnect reconciliation progress."""

    IDLE = "idle"
    PENDING = "pending"
    RUNNING = "running"
