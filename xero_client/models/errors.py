"""Xero error payloads.

Validation elements do not carry a type tag, so the entity inside each element
is recognised by the fields it has. `match_element_object` tries the shapes in a
fixed order and keeps the raw JSON when nothing fits:

1. Invoice: `InvoiceID` or `InvoiceNumber`, or `LineItems` with an ACCREC/ACCPAY `Type`
2. Item: `ItemID`, or `Code` without `ContactID`
3. Contact: `ContactID` or `Name`
4. Unknown: anything else, or a payload that failed to validate as its shape
"""

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from xero_client.models.entities import ContactObject, InvoiceObject, ItemObject

logger = logging.getLogger(__name__)


class ErrorType(str, Enum):
    VALIDATION = "ValidationException"
    POST_DATA_INVALID = "PostDataInvalidException"
    QUERY_PARSE = "QueryParseException"
    OBJECT_NOT_FOUND = "ObjectNotFoundException"
    ORGANISATION_OFFLINE = "OrganisationOfflineException"
    UNAUTHORISED = "UnauthorisedException"
    NO_DATA_PROCESSED = "NoDataProcessedException"
    UNSUPPORTED_MEDIA_TYPE = "UnsupportedMediaTypeException"
    METHOD_NOT_ALLOWED = "MethodNotAllowedException"
    INTERNAL_SERVER = "InternalServerException"
    NOT_IMPLEMENTED = "NotImplementedException"
    NOT_AVAILABLE = "NotAvailableException"
    RATE_LIMIT_EXCEEDED = "RateLimitExceededException"
    SYSTEM_UNAVAILABLE = "SystemUnavailableException"

    @property
    def description(self) -> str:
        return _DESCRIPTIONS[self]


_DESCRIPTIONS = {
    ErrorType.VALIDATION: "One or more objects failed validation",
    ErrorType.POST_DATA_INVALID: "The data posted is invalid or malformed",
    ErrorType.QUERY_PARSE: "The query string could not be parsed",
    ErrorType.OBJECT_NOT_FOUND: "The requested resource could not be found",
    ErrorType.ORGANISATION_OFFLINE: "The organisation is offline, try again later",
    ErrorType.UNAUTHORISED: "The request was not authorised",
    ErrorType.NO_DATA_PROCESSED: "No data was processed",
    ErrorType.UNSUPPORTED_MEDIA_TYPE: "The media type of the request is not supported",
    ErrorType.METHOD_NOT_ALLOWED: "The HTTP method is not allowed on this endpoint",
    ErrorType.INTERNAL_SERVER: "An unhandled error occurred inside Xero",
    ErrorType.NOT_IMPLEMENTED: "The method has not been implemented",
    ErrorType.NOT_AVAILABLE: "The API is not available, the organisation may be under maintenance",
    ErrorType.RATE_LIMIT_EXCEEDED: "The API rate limit has been exceeded",
    ErrorType.SYSTEM_UNAVAILABLE: "Xero is currently unavailable",
}


class UnknownObject(BaseModel):
    raw: dict[str, Any]

    def to_payload(self) -> dict:
        return dict(self.raw)


ValidationElementObject = InvoiceObject | ItemObject | ContactObject | UnknownObject


def _looks_like_invoice(payload: dict) -> bool:
    if "InvoiceID" in payload or "InvoiceNumber" in payload:
        return True
    return "LineItems" in payload and payload.get("Type") in ("ACCREC", "ACCPAY")


def _looks_like_item(payload: dict) -> bool:
    return "ItemID" in payload or ("Code" in payload and "ContactID" not in payload)


def _looks_like_contact(payload: dict) -> bool:
    return "ContactID" in payload or "Name" in payload


_SHAPES = (
    (_looks_like_invoice, InvoiceObject),
    (_looks_like_item, ItemObject),
    (_looks_like_contact, ContactObject),
)


def match_element_object(payload: dict) -> ValidationElementObject:
    for matches, model in _SHAPES:
        if not matches(payload):
            continue
        try:
            return model.model_validate(payload)
        except ValidationError:
            logger.debug("Element looked like %s but did not validate, keeping raw", model.__name__)
            break
    return UnknownObject(raw=payload)


class ValidationMessage(BaseModel):
    message: str = Field(alias="Message")


class ValidationElement(BaseModel):
    validation_errors: list[ValidationMessage]
    object: ValidationElementObject

    @model_validator(mode="before")
    @classmethod
    def _split_errors_from_object(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "object" in data:
            return data
        payload = {key: value for key, value in data.items() if key != "ValidationErrors"}
        return {
            "validation_errors": data.get("ValidationErrors", []),
            "object": match_element_object(payload),
        }

    @property
    def message(self) -> str:
        return "; ".join(error.message for error in self.validation_errors)

    def to_payload(self) -> dict:
        payload = self.object.to_payload()
        payload["ValidationErrors"] = [{"Message": error.message} for error in self.validation_errors]
        return payload


class ApiErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error_number: int | None = Field(default=None, alias="ErrorNumber")
    type: str = Field(alias="Type")
    message: str | None = Field(default=None, alias="Message")
    elements: list[ValidationElement] | None = Field(default=None, alias="Elements")

    @property
    def error_type(self) -> ErrorType | None:
        try:
            return ErrorType(self.type)
        except ValueError:
            return None

    def __str__(self) -> str:
        text = f"Xero API Error ({self.error_number}): {self.message or self.type}"
        if self.error_type is not None:
            text += f" - {self.error_type.description}"
        return text


class ValidationErrorResponse(ApiErrorResponse):
    """A ValidationException payload. `Elements` must be present and an array."""

    elements: list[ValidationElement] = Field(alias="Elements")
