from __future__ import annotations

import pytest
from fastapi import HTTPException

from services.errors import (
    ConcurrentUpdate,
    InvalidPauseDate,
    MissingExternalReference,
    NoMatchingSubscription,
    NotFound,
    PayoutsNotEnabled,
    PreconditionError,
    ProcessorError,
    ProcessorUnavailable,
    RefundAmountExceeded,
    http_status_for,
    raise_http_from_domain_error,
    wrap_processor_error,
)


@pytest.mark.parametrize("exc,status", [
    (NotFound(), 404),
    (NoMatchingSubscription(), 409),
    (ConcurrentUpdate(), 409),
    (PayoutsNotEnabled(), 409),
    (InvalidPauseDate(), 422),
    (RefundAmountExceeded(), 422),
    (PreconditionError(), 400),
    (ProcessorUnavailable(), 503),
    (MissingExternalReference(), 500),
])
def test_http_status_for(exc, status):
    assert http_status_for(exc) == status


def test_precondition_maps_to_detail_with_code():
    with pytest.raises(HTTPException) as exc:
        raise_http_from_domain_error(NoMatchingSubscription("no matching active subscription"))

    assert exc.value.status_code == 409
    assert exc.value.detail == {"code": "NO_MATCHING_SUBSCRIPTION", "message": "no matching active subscription"}


def test_fatal_error_does_not_leak_details():
    with pytest.raises(HTTPException) as exc:
        raise_http_from_domain_error(MissingExternalReference("sub 123 has no external id", entity_id="123"))

    assert exc.value.status_code == 500
    assert "123" not in str(exc.value.detail)


def test_unknown_error_fails_closed():
    with pytest.raises(HTTPException) as exc:
        raise_http_from_domain_error(RuntimeError("SOME_RANDOM_DB_BLOWUP_123"))

    assert exc.value.status_code == 500
    assert exc.value.detail == "Internal server error"


def test_wrap_processor_error():
    retryable = wrap_processor_error(
        ProcessorError("Gateway timeout", operation="transfer.create", retryable=True), entity_id="c1",
    )
    rejected = wrap_processor_error(
        ProcessorError("No such price", operation="subscription.update_price", retryable=False,
                       code="resource_missing"),
        entity_id="s1",
    )

    assert isinstance(retryable, ProcessorUnavailable)
    assert retryable.message == "transfer.create failed: Gateway timeout"
    assert type(rejected) is PreconditionError
    assert rejected.code == "PROCESSOR_RESOURCE_MISSING"
    assert rejected.context()["entity_id"] == "s1"
