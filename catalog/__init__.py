"""
Column catalog: metadata registry, physical schema gateway and the
user-facing column operations built on both.
"""

from catalog.errors import (
    CatalogError, DuplicateKey, Forbidden, InvalidMutation, InvalidName,
    NotFound, PartialFailure, SchemaConflict,
)
from catalog.gateway import SchemaGateway
from catalog.models import ColumnDefinition, DataType
from catalog.operations import ColumnOperations, OperationResult
from catalog.registry import ColumnRegistry
from catalog.service import ColumnMutationService, ConsistencyReport
from catalog.view import ColumnView
