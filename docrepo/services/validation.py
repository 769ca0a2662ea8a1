"""
Schema Validator

Optional per-collection schema check applied to write payloads before they
reach the network. Schemas are pydantic models.
"""

from typing import Any, Dict, List, Optional, Type

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..infrastructure.store.exceptions import ValidationException

logger = structlog.get_logger()


def _format_location(loc: tuple) -> str:
    return ".".join(str(part) for part in loc) or "__root__"


class SchemaValidator:
    """
    Validates document payloads against an optional pydantic model.

    Args:
        schema: Model describing a full document; None disables validation
        collection: Collection name, reported in validation errors
    """

    def __init__(
        self, schema: Optional[Type[BaseModel]] = None, collection: Optional[str] = None
    ):
        if schema is not None and not (
            isinstance(schema, type) and issubclass(schema, BaseModel)
        ):
            raise TypeError(
                f"schema must be a pydantic BaseModel subclass, got {type(schema).__name__}"
            )
        self.schema = schema
        self.collection = collection

    @property
    def enabled(self) -> bool:
        return self.schema is not None

    def violations(self, payload: Dict[str, Any], *, partial: bool = False) -> List[str]:
        """
        List every schema violation of ``payload``.

        In partial mode, fields absent from the payload are not reported as missing.
        """
        if self.schema is None:
            return []

        try:
            self.schema.model_validate(payload)
        except PydanticValidationError as e:
            errors = e.errors()
        else:
            return []

        found = []
        for error in errors:
            loc = tuple(error.get("loc", ()))
            if partial and error.get("type") == "missing" and (
                not loc or loc[0] not in payload
            ):
                continue
            found.append(f"{_format_location(loc)}: {error.get('msg', 'invalid value')}")
        return found

    def validate(self, payload: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
        """
        Validate a payload.

        Args:
            payload: Document fields to write
            partial: Validate only the supplied fields (updates)

        Returns:
            The payload, unchanged

        Raises:
            ValidationException: If the schema rejects the payload
        """
        found = self.violations(payload, partial=partial)
        if found:
            logger.info(
                "Validation: payload rejected",
                collection=self.collection,
                schema=self.schema.__name__ if self.schema else None,
                violations=found,
                partial=partial,
            )
            raise ValidationException(found, collection=self.collection)
        return payload
