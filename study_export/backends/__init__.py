"""Implementations of the external systems the exporter talks to"""

from .local import FolderMetadataSource, JsonTableIdCache, LocalAttachmentStore, LocalTableStore
