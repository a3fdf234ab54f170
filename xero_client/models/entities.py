"""Entity shapes the core needs to recognise.

Full entity modelling belongs to the resource wrappers. These models only carry
the identifying fields used to classify validation elements; every other field
is kept as an extra so nothing is lost.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class _XeroEntity(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_payload(self) -> dict:
        fields = type(self).model_fields
        payload = {
            fields[name].alias or name: getattr(self, name)
            for name in self.model_fields_set
            if name in fields
        }
        payload.update(self.model_extra or {})
        return payload


class InvoiceObject(_XeroEntity):
    invoice_id: str | None = Field(default=None, alias="InvoiceID")
    invoice_number: str | None = Field(default=None, alias="InvoiceNumber")
    type: str | None = Field(default=None, alias="Type")
    status: str | None = Field(default=None, alias="Status")
    line_items: list[dict] | None = Field(default=None, alias="LineItems")


class ContactObject(_XeroEntity):
    contact_id: str | None = Field(default=None, alias="ContactID")
    name: str | None = Field(default=None, alias="Name")
    contact_number: str | None = Field(default=None, alias="ContactNumber")
    email_address: str | None = Field(default=None, alias="EmailAddress")


class ItemObject(_XeroEntity):
    item_id: str | None = Field(default=None, alias="ItemID")
    code: str | None = Field(default=None, alias="Code")
    name: str | None = Field(default=None, alias="Name")


class Connection(BaseModel):
    """A tenant (organisation) the current token is authorised for."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    auth_event_id: str | None = Field(default=None, alias="authEventId")
    tenant_id: str = Field(alias="tenantId")
    tenant_type: str = Field(alias="tenantType")
    tenant_name: str | None = Field(default=None, alias="tenantName")
    created_date_utc: datetime | None = Field(default=None, alias="createdDateUtc")
    updated_date_utc: datetime | None = Field(default=None, alias="updatedDateUtc")
