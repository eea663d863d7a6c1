import pytest

from storefront.models import OrderStatus, can_transition


@pytest.mark.parametrize("current, target", [
    (OrderStatus.PENDING, OrderStatus.PROCESSING),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
    (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
])
def test_forward_transitions_are_allowed(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize("current, target", [
    (OrderStatus.PROCESSING, OrderStatus.PENDING),
    (OrderStatus.PENDING, OrderStatus.SHIPPED),
    (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    (OrderStatus.DELIVERED, OrderStatus.SHIPPED),
    (OrderStatus.CANCELLED, OrderStatus.PENDING),
    (OrderStatus.PROCESSING, OrderStatus.PROCESSING),
])
def test_backward_and_skipping_transitions_are_rejected(current, target):
    assert not can_transition(current, target)


def test_can_transition_accepts_stored_string_status():
    assert can_transition("pending", OrderStatus.PROCESSING)
