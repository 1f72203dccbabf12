from .catalog import CatalogReader, KeyIndex, MetadataRecord, build_key_index, load_key_index
from .errors import (
    CatalogDetectionError,
    DecryptionError,
    KeyResolutionError,
    OutputError,
    PreconditionError,
    UmaDecryptError,
)
from .pipeline import DecryptionPipeline, PipelineResult
from .tables import GenericTable, dump_tables, rebuild_catalog

__version__ = "0.1.0"
