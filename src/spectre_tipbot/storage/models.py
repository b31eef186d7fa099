"""Pydantic models for the persisted wallet metadata records.

Both record types are serialized with camelCase field names so the JSON
files keep their established shape.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _MetadataRecord(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class OwnedWalletMetadata(_MetadataRecord):
    """Durable record of a user's own wallet, keyed by ``owner_identifier``."""

    owner_identifier: str
    receive_address: str


class TransitionWalletMetadata(_MetadataRecord):
    """Durable record of an escrow wallet, keyed by ``identifier``.

    ``secret`` is the cleartext unlock passphrase of the escrow wallet; it
    is kept out of ``repr`` so it never ends up in logs.
    """

    identifier: str
    target_identifier: str
    initiator_identifier: str
    receive_address: str
    secret: str = Field(repr=False)
