from common.events import EventEmitter
from common.ids import generate_id, local_message_id

__all__ = ["EventEmitter", "generate_id", "local_message_id"]
