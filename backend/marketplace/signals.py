# Overview: Domain signals emitted by the order pipeline.

from blinker import Namespace

_signals = Namespace()

# Sent after an order status event is committed.
# sender: the Flask app; kwargs: event=OrderStatusEvent
order_status_appended = _signals.signal("order-status-appended")
