from __future__ import annotations

import dataclasses

import pytest

from lifecycle.enums import Audience, LifecycleStage, OrderStatus, QuoteStatus, VisualClass
from lifecycle.taxonomy import (
    ALL_FILTER_LABEL,
    ALL_FILTER_VALUE,
    ORDER_FALLBACK,
    ORDER_TAXONOMY,
    QUOTE_FALLBACK,
    QUOTE_TAXONOMY,
    StatusDescriptor,
    StatusTaxonomy,
    TAXONOMIES,
    get_order_status_config,
    get_quote_status_config,
    order_filter_options,
    quote_filter_options,
)

KNOWN_ORDER = [status for status in OrderStatus if status != OrderStatus.UNKNOWN]
KNOWN_QUOTE = [status for status in QuoteStatus if status != QuoteStatus.UNKNOWN]


@pytest.mark.parametrize("status", [status.value for status in KNOWN_ORDER])
def test_known_order_status_resolves_to_itself(status):
    assert get_order_status_config(status).value == status


@pytest.mark.parametrize("status", [status.value for status in KNOWN_QUOTE])
def test_known_quote_status_resolves_to_itself(status):
    assert get_quote_status_config(status).value == status


def test_every_enum_member_has_a_descriptor():
    assert set(ORDER_TAXONOMY.values) == {status.value for status in KNOWN_ORDER}
    assert set(QUOTE_TAXONOMY.values) == {status.value for status in KNOWN_QUOTE}


@pytest.mark.parametrize(
    "raw",
    ["quoted_value_not_in_taxonomy_typo", "", "SHIPPED", "unknown", None, 42, object()],
)
def test_unknown_status_returns_shared_fallback(raw):
    assert get_order_status_config(raw) is ORDER_FALLBACK
    assert get_quote_status_config(raw) is QUOTE_FALLBACK


def test_fallback_is_neutral():
    assert ORDER_FALLBACK.visual_class == VisualClass.NEUTRAL
    assert QUOTE_FALLBACK.visual_class == VisualClass.NEUTRAL


def test_enum_members_are_accepted_as_keys():
    assert get_order_status_config(OrderStatus.SHIPPED).value == "shipped"
    assert get_quote_status_config(QuoteStatus.QUOTED).customer_label == "Quote Ready"


def test_labels_depend_on_audience():
    assert ORDER_TAXONOMY.label("processing", Audience.CUSTOMER) == "Being Prepared"
    assert ORDER_TAXONOMY.label("processing", Audience.INTERNAL) == "Processing"
    assert QUOTE_TAXONOMY.label("rejected", Audience.CUSTOMER) == "Declined"
    assert QUOTE_TAXONOMY.label("rejected", Audience.INTERNAL) == "Rejected"


@pytest.mark.parametrize("taxonomy", [ORDER_TAXONOMY, QUOTE_TAXONOMY])
def test_filter_options_start_with_all_and_cover_each_status_once(taxonomy):
    options = taxonomy.filter_options()
    assert options[0].value == ALL_FILTER_VALUE
    assert options[0].label == ALL_FILTER_LABEL
    values = [option.value for option in options[1:]]
    assert len(values) == len(set(values))
    assert set(values) == set(taxonomy.values)
    assert len(options) == len(taxonomy) + 1


@pytest.mark.parametrize("taxonomy", [ORDER_TAXONOMY, QUOTE_TAXONOMY])
def test_filter_options_follow_lifecycle_order(taxonomy):
    rank = {LifecycleStage.PENDING: 0, LifecycleStage.IN_PROGRESS: 1, LifecycleStage.TERMINAL: 2}
    stages = [rank[taxonomy.get(option.value).stage] for option in taxonomy.filter_options()[1:]]
    assert stages == sorted(stages)


def test_filter_options_keep_declaration_order_within_a_stage():
    values = [option.value for option in order_filter_options()]
    assert values[:4] == ["all", "order_confirmed", "pending_payment", "payment_rejected"]
    assert values[-3:] == ["delivered", "delivery_failed", "cancelled"]


def test_lookups_are_idempotent():
    assert order_filter_options() == order_filter_options()
    assert quote_filter_options(Audience.INTERNAL) == quote_filter_options(Audience.INTERNAL)
    assert get_order_status_config("shipped") is get_order_status_config("shipped")


def test_internal_filter_labels_use_internal_names():
    labels = {option.value: option.label for option in quote_filter_options(Audience.INTERNAL)}
    assert labels["quoted"] == "Quote Sent"
    assert labels[ALL_FILTER_VALUE] == ALL_FILTER_LABEL


def test_descriptors_are_immutable():
    descriptor = get_order_status_config("shipped")
    with pytest.raises(dataclasses.FrozenInstanceError):
        descriptor.customer_label = "Changed"


def test_taxonomy_registry_is_read_only():
    with pytest.raises(TypeError):
        TAXONOMIES["orders"] = QUOTE_TAXONOMY
    assert TAXONOMIES["quotes"] is QUOTE_TAXONOMY


def test_membership_checks_machine_values():
    assert "pending_payment" in ORDER_TAXONOMY
    assert OrderStatus.CANCELLED in ORDER_TAXONOMY
    assert "pending_payment" not in QUOTE_TAXONOMY
    assert None not in ORDER_TAXONOMY


def _descriptor(value: str) -> StatusDescriptor:
    return StatusDescriptor(
        value=value,
        customer_label=value.title(),
        internal_label=value.title(),
        visual_class=VisualClass.INFO,
        icon=ORDER_FALLBACK.icon,
        description=value,
        stage=LifecycleStage.PENDING,
    )


def test_duplicate_values_are_rejected():
    with pytest.raises(ValueError):
        StatusTaxonomy("dup", [_descriptor("open"), _descriptor("open")], ORDER_FALLBACK)


def test_reserved_all_value_is_rejected():
    with pytest.raises(ValueError):
        StatusTaxonomy("reserved", [_descriptor("all")], ORDER_FALLBACK)


def test_raw_status_parsing_absorbs_unknown_values():
    assert OrderStatus.from_raw("shipped") is OrderStatus.SHIPPED
    assert OrderStatus.from_raw("teleported") is OrderStatus.UNKNOWN
    assert OrderStatus.from_raw(None) is OrderStatus.UNKNOWN
    assert QuoteStatus.from_raw(QuoteStatus.QUOTED) is QuoteStatus.QUOTED
    assert QuoteStatus.from_raw(OrderStatus.PROCESSING) is QuoteStatus.PROCESSING
