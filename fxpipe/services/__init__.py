# Services package
from fxpipe.services.resolver import ReferenceResolver
from fxpipe.services.upsert_service import TickUpsertService, UpsertStats
from fxpipe.services.import_service import ImportService
from fxpipe.services.data_service import DataService

__all__ = [
    "ReferenceResolver",
    "TickUpsertService",
    "UpsertStats",
    "ImportService",
    "DataService",
]
