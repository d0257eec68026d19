from .relay import OutboxRelay
from .service import OutboxService
from .writer import OutboxWriter, to_outbox_message

__all__ = ["OutboxRelay", "OutboxService", "OutboxWriter", "to_outbox_message"]
