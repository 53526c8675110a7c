"""Table handlers, and the shared pipeline they run through"""

from .base import TableExporter, TableHandler
from .basic_handlers import AppVersionHandler, SchemalessHandler, SimpleFieldHandler
from .factory import HandlerRegistry
from .schema_handlers import HealthDataHandler, SchemaBasedHandler
