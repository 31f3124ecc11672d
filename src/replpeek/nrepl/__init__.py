from .events import Completed, ErrorOutput, Output, ResponseEvent, Value, events_from_message
from .session import ReplSession, Transport, load_transport
