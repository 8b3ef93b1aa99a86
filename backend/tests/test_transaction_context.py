"""
Tests for transaction context decoding
"""

import json

import pytest

from app.core.transactions.context import ContextKind, TransactionContext, decode_context
from app.core.transactions.models import Transaction, TransactionStatus


class TestDecodeContext:
    """decode_context never raises; unroutable payloads decode to kind none"""

    @pytest.mark.parametrize("raw", [
        '{"sharesSubscriptionTracker": "sub-42"}',
        {"sharesSubscriptionTracker": "sub-42"},
        '{"shares_subscription_tracker": " sub-42 "}',
    ])
    def test_shares_subscription(self, raw):
        context = decode_context(raw)
        assert context.kind == ContextKind.SHARES_SUBSCRIPTION
        assert context.tracker_id == "sub-42"
        assert context.is_shares_subscription
        assert context.decode_error is None

    @pytest.mark.parametrize("raw", [None, "", "{}", '{"sharesSubscriptionTracker": ""}', '{"other": 1}'])
    def test_empty_or_unrelated_payload(self, raw):
        context = decode_context(raw)
        assert context == TransactionContext.none()

    @pytest.mark.parametrize("raw,error", [
        ("not json", "invalid-json"),
        ("{broken", "invalid-json"),
        ("[1, 2]", "not-an-object"),
        ('"a string"', "not-an-object"),
        (12345, "unsupported-type"),
    ])
    def test_malformed_payload(self, raw, error):
        context = decode_context(raw)
        assert context.kind == ContextKind.NONE
        assert context.tracker_id is None
        assert context.decode_error == error

    def test_to_raw(self):
        assert TransactionContext.none().to_raw() is None
        raw = TransactionContext.shares_subscription("sub-1").to_raw()
        assert json.loads(raw) == {"sharesSubscriptionTracker": "sub-1"}
        assert decode_context(raw) == TransactionContext.shares_subscription("sub-1")


class TestTransactionContextColumns:
    """Assigning Transaction.context keeps context_kind / context_ref in sync"""

    def test_decoded_on_construction(self, create_transaction):
        transaction = create_transaction(context='{"sharesSubscriptionTracker": "sub-7"}')

        assert transaction.context_kind == ContextKind.SHARES_SUBSCRIPTION
        assert transaction.context_ref == "sub-7"
        assert transaction.decoded_context == TransactionContext.shares_subscription("sub-7")

    def test_invalid_json_stored_as_none(self, create_transaction):
        transaction = create_transaction(context="{not json")

        assert transaction.context == "{not json"
        assert transaction.context_kind == ContextKind.NONE
        assert transaction.context_ref is None
        assert transaction.context_error == "invalid-json"
        assert transaction.decoded_context == TransactionContext.none(decode_error="invalid-json")

    def test_decode_error_persisted(self, db_session, create_transaction):
        transaction = create_transaction(context="[1, 2]")

        db_session.expire_all()
        stored = db_session.get(Transaction, transaction.id)

        assert stored.context_kind == ContextKind.NONE
        assert stored.context_error == "not-an-object"

    def test_unrelated_payload_has_no_error(self, create_transaction):
        transaction = create_transaction(context='{"other": 1}')

        assert transaction.context_kind == ContextKind.NONE
        assert transaction.context_error is None

    def test_no_context_defaults_to_none(self, create_transaction):
        transaction = create_transaction()

        assert transaction.context is None
        assert transaction.context_kind == ContextKind.NONE
        assert transaction.decoded_context == TransactionContext.none()

    def test_reassignment_updates_kind(self, db_session, create_transaction):
        transaction = create_transaction(context='{"sharesSubscriptionTracker": "sub-7"}')

        transaction.context = None
        db_session.commit()
        db_session.refresh(transaction)

        assert transaction.context_kind == ContextKind.NONE
        assert transaction.context_ref is None

        transaction.context = "{broken"
        db_session.commit()
        db_session.refresh(transaction)

        assert transaction.context_error == "invalid-json"


def test_terminal_statuses():
    assert TransactionStatus.COMPLETE.is_terminal
    assert TransactionStatus.FAILED.is_terminal
    assert not TransactionStatus.PENDING.is_terminal
    assert not TransactionStatus.PROCESSING.is_terminal
